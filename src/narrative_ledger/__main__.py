"""Entry point for the narrative-ledger MCP server."""

from narrative_ledger.server import create_server


def main() -> None:
    """Run the narrative-ledger MCP server."""
    server = create_server()
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
