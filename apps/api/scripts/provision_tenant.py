import argparse

from core.tenancy import TenantResolver, get_resolver


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create (or reuse) a tenant's data partition and its tables."
    )
    parser.add_argument(
        "--tenant-id",
        dest="tenant_ids",
        action="append",
        default=[],
        help="Tenant ID to provision. Repeat to provision several tenants.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List tenants that already have a data partition.",
    )
    return parser.parse_args(argv)


def provision(tenant_ids: list[str], resolver: TenantResolver | None = None) -> list[str]:
    resolver = resolver or get_resolver()
    return [resolver.provision(tenant_id).database_name for tenant_id in tenant_ids]


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    resolver = get_resolver()
    try:
        for tenant_id, database_name in zip(args.tenant_ids, provision(args.tenant_ids, resolver)):
            print("Provisioned:", tenant_id, "->", database_name)
        if args.list or not args.tenant_ids:
            for tenant_id in resolver.discover_tenant_ids():
                print("Tenant:", tenant_id, "->", resolver.database_name(tenant_id))
    finally:
        resolver.dispose()


if __name__ == "__main__":
    main()
