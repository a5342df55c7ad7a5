"""
Pytest fixtures for the RestaurantOS backend tests.

Provides an in-memory database, test client, users with session tokens, and
a small catalog (pizza + bread over flour, cheese, tomato).
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import RawMaterial, Product, ProductIngredient, ROLE_SUPER_ADMIN, ROLE_STAFF
from app.services import auth_service, session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return auth_service.create_user(
        db_session,
        name="Admin",
        email="admin@test.com",
        password="admin12345",
        role=ROLE_SUPER_ADMIN,
    )


@pytest.fixture(scope='function')
def staff_user(db_session):
    return auth_service.create_user(
        db_session,
        name="Staff",
        email="staff@test.com",
        password="staff12345",
        role=ROLE_STAFF,
    )


@pytest.fixture(scope='function')
def admin_headers(db_session, admin_user):
    _, token = session_service.create_session(db_session, admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def staff_headers(db_session, staff_user):
    _, token = session_service.create_session(db_session, staff_user.id)
    return auth_headers(token)


def make_material(session, name, quantity, cost, unit="g", threshold=10):
    material = RawMaterial(
        name=name,
        quantity_available=quantity,
        unit=unit,
        cost_per_unit=cost,
        low_stock_threshold=threshold,
    )
    session.add(material)
    session.commit()
    return material


def make_product(session, name, price, bom, cost=0.0):
    """bom: [(RawMaterial, quantity_used)]; cost is stored as given."""
    product = Product(name=name, selling_price=price, manufacturing_cost=cost, sell_count=0)
    for material, quantity_used in bom:
        product.ingredients.append(ProductIngredient(raw_material_id=material.id, quantity_used=quantity_used))
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    flour 1000g @0.01, cheese 500g @0.05, tomato 300g @0.02

    pizza (12.00, cost 8.00): flour 200, cheese 100, tomato 50
    bread (4.00, cost 3.00):  flour 300
    """
    flour = make_material(db_session, "Flour", 1000, 0.01)
    cheese = make_material(db_session, "Cheese", 500, 0.05)
    tomato = make_material(db_session, "Tomato", 300, 0.02)
    pizza = make_product(db_session, "Pizza", 12.0, [(flour, 200), (cheese, 100), (tomato, 50)], cost=8.0)
    bread = make_product(db_session, "Bread", 4.0, [(flour, 300)], cost=3.0)
    return {
        "flour": flour.id,
        "cheese": cheese.id,
        "tomato": tomato.id,
        "pizza": pizza.id,
        "bread": bread.id,
    }


def stock_of(session, material_id):
    session.expire_all()
    return session.get(RawMaterial, material_id).quantity_available


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
