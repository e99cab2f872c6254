from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import Base, Principal, PrincipalRole, PrincipalStoreAccess, Store
from app.services.scratcher_catalog_service import list_products
from app.services.scratcher_slot_service import init_slots


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        store = db.execute(select(Store).where(Store.name == 'Downtown')).scalar_one_or_none()
        if not store:
            store = Store(name='Downtown', active=True)
            db.add(store)
            db.flush()

        manager = db.execute(select(Principal).where(Principal.username == 'manager')).scalar_one_or_none()
        if not manager:
            manager = Principal(
                username='manager',
                display_name='Demo Manager',
                role=PrincipalRole.MANAGER,
                store_id=None,
                active=True,
            )
            db.add(manager)
            db.flush()

        access = db.execute(
            select(PrincipalStoreAccess).where(
                PrincipalStoreAccess.principal_id == manager.id,
                PrincipalStoreAccess.store_id == store.id,
            )
        ).scalar_one_or_none()
        if not access:
            db.add(PrincipalStoreAccess(principal_id=manager.id, store_id=store.id))

        store_user = db.execute(select(Principal).where(Principal.username == 'store1')).scalar_one_or_none()
        if not store_user:
            db.add(
                Principal(
                    username='store1',
                    display_name='Downtown Register',
                    role=PrincipalRole.STORE,
                    store_id=store.id,
                    active=True,
                )
            )

        list_products(db)
        init_slots(db, store_id=store.id)
        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
