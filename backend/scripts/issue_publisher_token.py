import sys

from app.core.security import ALL_SITES, create_publisher_token


def main() -> int:
    if len(sys.argv) < 3:
        print("usage: issue_publisher_token.py <subject> <site_id>[,<site_id>...]|*", file=sys.stderr)
        return 2
    subject = sys.argv[1]
    raw_sites = sys.argv[2]
    site_ids = ALL_SITES if raw_sites == ALL_SITES else [int(value) for value in raw_sites.split(",") if value]
    print(create_publisher_token(subject, site_ids))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
