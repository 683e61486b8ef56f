import os, sys, pytest
# Ensure backend directory is on path so 'parcelops' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from parcelops import create_app, get_db
from parcelops.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import parcelops.models.customer  # noqa: F401
import parcelops.models.order  # noqa: F401
import parcelops.models.payment  # noqa: F401
import parcelops.models.audit  # noqa: F401


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({'JWT_SECRET_KEY': 'test-secret', 'SESSION_LOOKUP_TIMEOUT': 2})
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def clean_ledger(app_instance):
    """Empty the order / payment / customer tables so aggregate assertions see only this test's rows."""
    from parcelops.models.customer import Customer
    from parcelops.models.order import Order
    from parcelops.models.payment import Payment
    with app_instance.app_context():
        session = get_db()
        session.query(Payment).delete()
        session.query(Order).delete()
        session.query(Customer).delete()
        session.commit()
    yield
