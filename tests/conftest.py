import pytest

from agrimarket import create_app, db
from agrimarket.models import AggregatedProduct, Payment, Product, User


@pytest.fixture
def app(tmp_path):
    """App bound to a throwaway SQLite file so worker threads share one database."""
    app = create_app('testing', {'SQLALCHEMY_DATABASE_URI': f'sqlite:///{tmp_path / "agrimarket-test.db"}'})
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(app):
    seed = {
        'admin': User(name='Admin', email='admin@example.com', role='admin'),
        'buyer': User(name='Asha Buyer', email='asha@example.com', role='buyer', phone='+919800000001'),
        'buyer2': User(name='Ravi Buyer', email='ravi@example.com', role='buyer'),
        'farmer': User(name='Meena Farmer', email='meena@example.com', role='farmer'),
        'farmer2': User(name='Kumar Farmer', email='kumar@example.com', role='farmer'),
        'suspended': User(name='Blocked', email='blocked@example.com', role='buyer', is_suspended=True),
    }
    with app.app_context():
        db.session.add_all(seed.values())
        db.session.commit()
        return {key: user.id for key, user in seed.items()}


@pytest.fixture
def as_user(users):
    """Headers the upstream identity provider would set for ``role``."""
    def _headers(role):
        return {'X-User-Id': str(users[role])}
    return _headers


@pytest.fixture
def make_aggregated(app):
    def _make(**overrides):
        fields = dict(product_name='Wheat', category='grain', total_quantity=100, standard_price=25000,
                      quality_grade='A', farmer_count=3, regions=['Punjab', 'Haryana'], quantity_unit='quintal')
        fields.update(overrides)
        with app.app_context():
            product = AggregatedProduct(**fields)
            db.session.add(product)
            db.session.commit()
            return product.id
    return _make


@pytest.fixture
def make_product(app, users):
    def _make(farmer='farmer', **overrides):
        fields = dict(farmer_id=users[farmer], name='Tomatoes', category='vegetable', quantity_available=200,
                      price_per_unit=30, quality_grade='A', status='pending_review')
        fields.update(overrides)
        with app.app_context():
            product = Product(**fields)
            db.session.add(product)
            db.session.commit()
            return product.id
    return _make


@pytest.fixture
def make_payment(app, users):
    def _make(**overrides):
        fields = dict(farmer_id=users['farmer'], buyer_id=users['buyer'], amount=1000, farmer_amount=850,
                      platform_fee=150, status='pending')
        fields.update(overrides)
        with app.app_context():
            payment = Payment(**fields)
            db.session.add(payment)
            db.session.commit()
            return payment.id
    return _make


@pytest.fixture
def write_before_update(monkeypatch):
    """Commit ``statement`` on a second connection right before ``module`` builds its first UPDATE.

    Simulates another request changing a row between the status check and
    the guarded write. Needs an active app context.
    """
    def _install(module, statement):
        real_update = module.update
        queued = [statement]

        def _update(*args, **kwargs):
            if queued:
                with db.engine.begin() as connection:
                    connection.execute(queued.pop())
            return real_update(*args, **kwargs)

        monkeypatch.setattr(module, 'update', _update)
    return _install
