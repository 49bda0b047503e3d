import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from backend.core.exceptions import MalformedEvent, SignatureInvalid
from backend.routes.common import get_db
from backend.services.webhook_service import handle_gateway_event

router = APIRouter(prefix='/payments', tags=['payments'])

logger = logging.getLogger(__name__)


@router.post('/webhook')
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    # The signature covers the exact bytes Stripe sent; read them before anything parses the body.
    raw_body = await request.body()
    signature = request.headers.get('stripe-signature')

    try:
        outcome = await run_in_threadpool(handle_gateway_event, db, raw_body, signature)
    except SignatureInvalid as exc:
        logger.warning('Rejected webhook delivery: %s', exc.detail)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={'received': False, 'error': exc.detail},
        )
    except MalformedEvent as exc:
        logger.error('Malformed webhook event acknowledged without processing: %s', exc.detail)
        return {'received': True, 'status': 'rejected', 'detail': exc.detail}
    except Exception:
        # Acknowledge anyway so the gateway does not redeliver into the same failure.
        logger.exception('Webhook processing failed')
        return {'received': True, 'status': 'error'}

    return {
        'received': True,
        'status': outcome.status,
        'event_id': outcome.event_id,
        'event_type': outcome.event_type,
    }
