# Overview: Pytest coverage for the Flask CLI command groups.

from hera.models import CoreEntity, Organization


class TestCli:
    def test_org_entity_and_attribute_flow(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["orgs", "create", "--name", "Hera Cafe", "--code", "HER"])
        assert result.exit_code == 0, result.output
        org = db_session.query(Organization).filter_by(code="HER").one()

        result = runner.invoke(args=[
            "entities", "create", "--org-id", str(org.id), "--type", "product",
            "--name", "Tea", "--code", "SKU-1", "--field", "price=4.50:number",
        ])
        assert result.exit_code == 0, result.output
        tea = db_session.query(CoreEntity).filter_by(entity_code="SKU-1").one()

        result = runner.invoke(args=["attrs", "get", "--entity-id", str(tea.id)])
        assert "price = 4.50 [number]" in result.output

        result = runner.invoke(args=["entities", "list", "--org-id", str(org.id), "--type", "product"])
        assert "SKU-1" in result.output

    def test_duplicate_code_reported(self, app, db_session, org_a, product_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "entities", "create", "--org-id", str(org_a.id), "--type", "product",
            "--name", "Tea", "--code", "TEA-001",
        ])
        assert result.exit_code != 0
        assert "already in use" in result.output

    def test_generated_code(self, app, db_session, org_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "entities", "create", "--org-id", str(org_a.id), "--type", "product", "--name", "Green Tea",
        ])
        assert result.exit_code == 0, result.output
        assert "GREENTEA-" in result.output
