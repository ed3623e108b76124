import asyncio
import json
import sys

from app.application.services.publishing_errors import PublishError, SiteNotFoundError
from app.application.services.publishing_service import (
    MANIFEST_NAME,
    build_publishing_service,
    publish_site,
    storage_path,
)
from app.infrastructure.db.session import content_session
from app.integrations.object_storage import get_object_storage


def main() -> int:
    if len(sys.argv) < 2:
        print("usage: publish_site.py <site_id>", file=sys.stderr)
        return 2
    try:
        site_id = int(sys.argv[1])
    except ValueError:
        print(f"site_id must be an integer, got {sys.argv[1]!r}", file=sys.stderr)
        return 2

    try:
        service = build_publishing_service()
        with content_session() as db:
            result = asyncio.run(publish_site(db, site_id, service=service, metadata={"trigger": "cli"}))
    except SiteNotFoundError as exc:
        print(f"Publish failed: {exc}", file=sys.stderr)
        return 1
    except PublishError as exc:
        print(f"Publish failed [{exc.error_code}]: {exc}", file=sys.stderr)
        return 1

    storage = get_object_storage()
    print(f"Published site {site_id} version {result.version} in {result.duration_ms}ms")
    for logical_name, versioned_name in result.files.items():
        print(f"- {logical_name}: {storage.public_url(storage_path(site_id, versioned_name))}")
    print(f"- manifest: {storage.public_url(storage_path(site_id, MANIFEST_NAME))}")
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
