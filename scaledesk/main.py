import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from scaledesk.config import settings
from scaledesk.routers import customers, jobs

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Scale Service Desk')

app.include_router(customers.router)
app.include_router(jobs.router)


@app.get('/health', response_class=PlainTextResponse)
def health() -> str:
    return 'ok'
