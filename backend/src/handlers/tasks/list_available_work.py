"""
List Available Work Handler.
GET /worker/work-items?poolId=&page=&pageSize=

Sweeps expired leases first so items abandoned by timed-out workers show up.
"""
from shared.auth import authenticated
from shared.leases import LeaseManager
from shared.utils import api_handler, get_query_param, get_int_param


@api_handler
def handler(event, context):
    authenticated(event)

    page = get_int_param(event, 'page', 1, maximum=10000)
    page_size = get_int_param(event, 'pageSize', 25)
    total, items = LeaseManager().list_available(
        pool_id=get_query_param(event, 'poolId'),
        page=page,
        page_size=page_size,
    )

    return 200, {
        'items': items,
        'page': page,
        'pageSize': page_size,
        'total': total,
    }
