from fastapi import Depends, FastAPI
from fastapi.responses import PlainTextResponse

from app.auth import Principal, Role, get_current_principal
from app.routers import files, management, store

app = FastAPI(title='Scratcher Reconciliation Portal')

app.include_router(files.router)
app.include_router(store.router)
app.include_router(management.router)


@app.get('/')
def root(principal: Principal = Depends(get_current_principal)):
    home = '/store/scratchers/bundle' if principal.role == Role.STORE else '/management/scratchers/products'
    return {'principal_id': principal.id, 'role': principal.role.value, 'home': home}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
