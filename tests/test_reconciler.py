from odoo_sync.sync.errors import OdooRpcError


def _seed(odoo):
    odoo.add("res.partner", 10, name="a")
    odoo.add("res.partner", 30, name="c")


async def _map(s):
    for wp_id, odoo_id in [(1, 10), (2, 20), (3, 30)]:
        await s.entity_map.save("crm", "contact", wp_id, odoo_id, "res.partner")


def test_reports_orphans_without_fixing(harness, odoo):
    _seed(odoo)

    async def scenario(s):
        await _map(s)
        report = await s.reconciler.reconcile("crm", "contact", "res.partner")
        return report, await s.entity_map.get_odoo_id("crm", "contact", 2)

    report, still_mapped = harness.run(scenario)
    assert report == {"checked": 3, "orphaned": [{"wp_id": 2, "odoo_id": 20}], "fixed": 0}
    assert still_mapped == 20


def test_fix_removes_orphans(harness, odoo):
    _seed(odoo)

    async def scenario(s):
        await _map(s)
        report = await s.reconciler.reconcile("crm", "contact", "res.partner", fix=True)
        return report, await s.entity_map.get_all("crm", "contact")

    report, remaining = harness.run(scenario)
    assert report["checked"] == 3
    assert report["fixed"] == 1
    assert [m["wp_id"] for m in remaining] == [1, 3]


def test_single_search_call_includes_archived(harness, odoo):
    _seed(odoo)

    async def scenario(s):
        await _map(s)
        await s.reconciler.reconcile("crm", "contact", "res.partner")

    harness.run(scenario)
    searches = [c for c in odoo.calls if c[1] == "search"]
    assert len(searches) == 1
    assert searches[0][2] == [[["id", "in", [10, 20, 30]]]]


def test_remote_failure_reports_nothing(harness, odoo):
    odoo.fail = OdooRpcError("HTTP error: connection refused")

    async def scenario(s):
        await _map(s)
        report = await s.reconciler.reconcile("crm", "contact", "res.partner", fix=True)
        return report, await s.entity_map.get_all("crm", "contact")

    report, remaining = harness.run(scenario)
    assert report == {"checked": 3, "orphaned": [], "fixed": 0}
    assert len(remaining) == 3


def test_no_mappings(harness, odoo):
    async def scenario(s):
        return await s.reconciler.reconcile("crm", "contact", "res.partner")

    assert harness.run(scenario) == {"checked": 0, "orphaned": [], "fixed": 0}
    assert odoo.calls == []


def test_large_sets_are_chunked(harness, odoo, monkeypatch):
    monkeypatch.setattr("odoo_sync.sync.reconciler.SEARCH_CHUNK", 2)
    total = 5
    for i in range(1, total + 1):
        odoo.add("res.partner", 10_000 + i)

    async def scenario(s):
        for i in range(1, total + 1):
            await s.entity_map.save("crm", "contact", i, 10_000 + i, "res.partner")
        return await s.reconciler.reconcile("crm", "contact", "res.partner")

    report = harness.run(scenario)
    assert report["checked"] == total
    assert report["orphaned"] == []
    assert len([c for c in odoo.calls if c[1] == "search"]) == 3
