"""
Celery tasks for Inventory Management
Autosave of stocktake counts and low stock alerts
"""

from celery import shared_task
from django.core.mail import send_mail
from django.conf import settings
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce
import logging

logger = logging.getLogger(__name__)


@shared_task(name='inventory.autosave_stocktake_counts')
def autosave_stocktake_counts(session_id: str = None):
    """
    Apply queued count edits of in-progress stocktakes.

    Only items with pending edits are written.

    Args:
        session_id: Optional single session to flush; all in-progress ones otherwise

    Returns:
        dict: sessions checked and edits applied
    """
    from inventory.models import StocktakeSession
    from inventory.stocktake_services import StocktakeReconciler, pending_events
    from inventory.state_machines import StocktakeStatus

    sessions = StocktakeSession.objects.filter(status=StocktakeStatus.IN_PROGRESS)
    if session_id:
        sessions = sessions.filter(pk=session_id)

    results = {'sessions_checked': 0, 'sessions_saved': 0, 'edits_applied': 0}
    for session in sessions:
        results['sessions_checked'] += 1
        if not pending_events(session).exists():
            continue
        applied = StocktakeReconciler.flush(session)
        if applied:
            results['sessions_saved'] += 1
            results['edits_applied'] += applied

    if results['edits_applied']:
        logger.info(
            f"Autosaved {results['edits_applied']} count edits across {results['sessions_saved']} stocktakes"
        )
    return results


def low_stock_products(business):
    """Active simple products at or below their low stock threshold (all active warehouses)."""
    from inventory.models import Product

    products = (
        Product.objects
        .filter(business=business, is_active=True, is_combo=False)
        .annotate(
            on_hand=Coalesce(
                Sum('warehouse_stock__quantity', filter=Q(warehouse_stock__warehouse__is_active=True)),
                0,
            )
        )
        .order_by('name')
    )
    return [product for product in products if product.on_hand <= product.low_stock_threshold]


@shared_task(name='inventory.check_low_stock')
def check_low_stock(business_id: str = None):
    """
    Send email alert for low stock items.

    Args:
        business_id: Optional specific business (if None, checks all)

    Returns:
        dict: Check results
    """
    from accounts.models import Business

    logger.info(f"Checking low stock (business: {business_id or 'all'})")

    if business_id:
        businesses = list(Business.objects.select_related('owner').filter(id=business_id))
        if not businesses:
            logger.error(f"Business {business_id} not found")
            raise Business.DoesNotExist(business_id)
    else:
        businesses = list(Business.objects.select_related('owner').filter(is_active=True))

    results = {
        'businesses_checked': len(businesses),
        'alerts_sent': 0,
        'low_stock_items': 0,
    }

    for business in businesses:
        low_stock = low_stock_products(business)
        if not low_stock:
            continue

        results['low_stock_items'] += len(low_stock)
        for product in low_stock:
            logger.warning(
                f"Low stock: {business.name} / {product.sku} has {product.on_hand} "
                f"(threshold {product.low_stock_threshold})"
            )

        recipient = business.email or business.owner.email
        if not recipient:
            continue

        items_list = "\n".join([
            f"- {product.name} ({product.sku}): {product.on_hand} {product.unit} remaining "
            f"(threshold: {product.low_stock_threshold})"
            for product in low_stock[:20]
        ])
        more = f"...and {len(low_stock) - 20} more items" if len(low_stock) > 20 else ''

        message = f"""
Hello {business.owner.name},

The following items are running low on stock:

{items_list}

{more}

Total items with low stock: {len(low_stock)}

Please review your inventory and consider reordering these items.
"""
        send_mail(
            f"Low Stock Alert - {business.name}",
            message,
            settings.DEFAULT_FROM_EMAIL,
            [recipient],
            fail_silently=False,
        )
        results['alerts_sent'] += 1
        logger.info(f"Low stock alert sent to {recipient} for {len(low_stock)} items")

    return results
