import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from materials_ledger.config import settings
from materials_ledger.logging_config import configure_logging
from materials_ledger.routers import claims, notifications, purchase_orders, reports, returns, stock_adjustments

configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title='Materials Ledger')

app.include_router(claims.router)
app.include_router(purchase_orders.router)
app.include_router(returns.router)
app.include_router(stock_adjustments.router)
app.include_router(notifications.router)
app.include_router(reports.router)

logger.info('Materials ledger API configured: bom_drift_policy=%s', settings.bom_drift_policy)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok'


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
