import json
import os
import sys
from pathlib import Path


def main() -> int:
    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root / 'backend'))

    from workers_api.clients.console import WorkersConsoleClient

    base = os.getenv('SMOKE_API_BASE', 'http://localhost:8000').rstrip('/')
    username = os.getenv('DEMO_ADMIN_USER', 'admin')
    password = os.getenv('DEMO_ADMIN_PASSWORD', 'admin123')

    client = WorkersConsoleClient.connect(base)
    health = client.http.get('/api/health').json()
    assert health.get('ok') is True, health
    print('health_ok')

    client.login(username, password)
    print('login_ok')

    _items, pagination = client.list_ranges(limit=1)
    portal = client.portal_status()
    stats = client.eligibility_stats()
    print(json.dumps({
        'ranges_total': pagination.total,
        'portal_available': portal.get('portalAvailable'),
        'coverage_percent': stats.coverage_percent,
    }))
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
