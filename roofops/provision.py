"""
Provision a new tenant from the command line.

Creates the tables if needed, seeds the system message templates, then
creates the company, its owner account and a default location.

    python -m roofops.provision --name "Acme Roofing" --subdomain acme \\
        --email owner@acme.test --password 'changeme123'
"""

import argparse
import json
import sys

from roofops.core.exceptions import RoofOpsError
from roofops.core.logging import configure_logging
from roofops.database import get_db, init_db
from roofops.templates.service import ensure_system_templates
from roofops.tenancy import provision_tenant


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RoofOps - provision a tenant")
    parser.add_argument("--name", required=True, help="Company name")
    parser.add_argument("--subdomain", required=True, help="Unique lowercase subdomain")
    parser.add_argument("--email", required=True, help="Owner email (login)")
    parser.add_argument("--password", required=True, help="Owner password")
    parser.add_argument("--first", default="", help="Owner first name")
    parser.add_argument("--last", default="", help="Owner last name")
    return parser


def run(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_db()
    db = get_db()
    try:
        ensure_system_templates(db)
        result = provision_tenant(
            db,
            name=args.name,
            subdomain=args.subdomain,
            owner_email=args.email,
            owner_password=args.password,
            first_name=args.first,
            last_name=args.last,
        )
    except RoofOpsError as exc:
        print(f"Provisioning failed: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(json.dumps(result, indent=2, default=str))
    return 0


def main():
    configure_logging()
    sys.exit(run())


if __name__ == "__main__":
    main()
