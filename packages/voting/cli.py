import asyncio
import json

import typer

from . import config
from .catalog import ElectionCatalog, search
from .connection import ConnectionManager
from .contract import ContractGateway
from .metadata import MetadataStore
from .notifications import Notifier
from .wallet import RpcWalletProvider

app = typer.Typer()


@app.callback()
def main():
    """openqura voting service tools."""
    config.configure_logging()


def _catalog() -> ElectionCatalog:
    return ElectionCatalog(ContractGateway(), MetadataStore())


@app.command()
def wallet_status(rpc_url: str = typer.Option(config.WALLET_RPC_URL)):
    """Print the wallet connection as the service would derive it at startup."""
    manager = ConnectionManager(RpcWalletProvider(rpc_url), Notifier())
    state = asyncio.run(manager.check_connection())
    data = state.model_dump(mode="json")
    data["is_wrong_network"] = manager.is_wrong_network
    typer.echo(json.dumps(data))
    if not state.connected:
        raise typer.Exit(code=1)


@app.command()
def elections(query: str = typer.Argument("")):
    snapshot = asyncio.run(_catalog().list_elections())
    if query:
        snapshot.elections = search(snapshot.elections, query)
    typer.echo(snapshot.model_dump_json())


@app.command()
def show_election(key: str = typer.Argument(...), address: str = typer.Option(None)):
    details = asyncio.run(_catalog().get_details(key, address))
    typer.echo(details.model_dump_json())


if __name__ == "__main__":
    app()
