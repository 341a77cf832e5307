from backoffice.models import Product, ReturnPolicy


def test_init_db_creates_default_policy_once(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["backoffice", "init-db"])
    assert result.exit_code == 0
    assert "Return policy: 7 days" in result.output

    runner.invoke(args=["backoffice", "init-db"])
    assert db_session.query(ReturnPolicy).count() == 1

    shown = runner.invoke(args=["backoffice", "show-policy"])
    assert "Max return days:        7" in shown.output


def test_add_product_and_show_stock(app, db_session, put_stock):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["backoffice", "add-product", "--sku", "SKU-1", "--name", "Widget"])
    assert result.exit_code == 0
    duplicate = runner.invoke(args=["backoffice", "add-product", "--sku", "SKU-1", "--name", "Widget"])
    assert "already exists" in duplicate.output

    product = db_session.query(Product).filter_by(sku="SKU-1").one()
    assert runner.invoke(args=["backoffice", "show-stock"]).output.strip() == "No stock rows."
    put_stock("A", product.id, 4)
    output = runner.invoke(args=["backoffice", "show-stock", "--outlet", "A"]).output
    assert product.id in output
