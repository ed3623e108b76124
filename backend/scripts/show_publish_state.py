import json
import sys

from app.application.services.publishing_errors import PublishError
from app.infrastructure.cache.redis_client import get_publish_coordinator


def main() -> int:
    if len(sys.argv) < 2:
        print("usage: show_publish_state.py <site_id>", file=sys.stderr)
        return 2
    site_id = int(sys.argv[1])

    coordinator = get_publish_coordinator()
    try:
        state = coordinator.get_state(site_id)
        latest_version = coordinator.get_latest_version(site_id)
    except PublishError as exc:
        print(f"Could not read publish state [{exc.error_code}]: {exc}", file=sys.stderr)
        return 1

    if state is None:
        print(f"Site {site_id} has not been published")
        return 1

    print(json.dumps({**state.to_dict(), "latestVersion": latest_version}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
