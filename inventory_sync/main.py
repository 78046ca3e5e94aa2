from fastapi import FastAPI

from inventory_sync.routers import sync, webhooks

app = FastAPI(title='Poster Inventory Sync')

app.include_router(sync.router)
app.include_router(webhooks.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
