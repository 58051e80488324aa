"""CLI for the cross-chain portfolio tracker."""

import asyncio
import json
import logging
from enum import StrEnum

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from crosschain_portfolio.balances import default_router
from crosschain_portfolio.config import DEFAULT_API_URL, ENV_API_URL, Settings, load_settings
from crosschain_portfolio.core.aggregator import BalanceView, parse_price, value_by_chain
from crosschain_portfolio.core.consolidator import TokenCatalog
from crosschain_portfolio.core.formatting import abbreviate_address, add_decimal_strings, format_amount, format_currency
from crosschain_portfolio.core.models import Chain, ChainType, ConnectedAccount, PortfolioSnapshot
from crosschain_portfolio.core.pipeline import PortfolioPipeline
from crosschain_portfolio.data import get_chain_name, get_rpc_endpoints
from crosschain_portfolio.errors import ConfigurationError, PortfolioError
from crosschain_portfolio.integrations.lifi import LiFiClient

# Install rich traceback handler
install(show_locals=False)

app = typer.Typer(
    name="crosschain-portfolio",
    help="Aggregate token balances of EVM, Solana and Bitcoin wallets across chains",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=debug)],
        force=True,
    )


def _load_settings(**overrides) -> Settings:
    """
    Load settings or exit with a hint.

    Raises
    ------
    typer.Exit
        If the configuration is missing or invalid

    """
    try:
        return load_settings(**overrides)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        console.print(f"[dim]  export {ENV_API_URL}='{DEFAULT_API_URL}'[/dim]")
        raise typer.Exit(code=1) from e


def _build_accounts(evm: list[str], svm: list[str], utxo: list[str]) -> list[ConnectedAccount]:
    accounts = []
    for chain_type, addresses in ((ChainType.EVM, evm), (ChainType.SVM, svm), (ChainType.UTXO, utxo)):
        accounts.extend(ConnectedAccount(address=address, chain_type=chain_type) for address in addresses)
    return accounts


async def _fetch_portfolio(settings: Settings, accounts: list[ConnectedAccount], view: BalanceView) -> PortfolioSnapshot:
    """Run one fetch cycle while rendering its progress."""
    config = settings.fetch.model_copy(update={"view": view})
    router = default_router(timeout=settings.request_timeout)
    final = None

    async with LiFiClient(settings.api_url, settings.api_key, settings.request_timeout) as lifi:
        pipeline = PortfolioPipeline(lifi, router, lifi, config=config)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Loading token catalog...", total=None)
                async for snapshot in pipeline.stream(accounts):
                    state = snapshot.progress
                    if state.total:
                        progress.update(
                            task,
                            description=f"Fetching balances ({state.processed}/{state.total} tokens)",
                            total=state.total,
                            completed=state.processed,
                        )
                    final = snapshot
                progress.update(task, description="✓ Fetch complete")
        finally:
            await router.close()

    return final or pipeline.snapshot


@app.command()
def balances(
    evm: list[str] = typer.Option([], "--evm", help="EVM wallet address (repeatable)"),
    svm: list[str] = typer.Option([], "--svm", help="Solana wallet address (repeatable)"),
    utxo: list[str] = typer.Option([], "--utxo", help="Bitcoin wallet address (repeatable)"),
    all_tokens: bool = typer.Option(False, "--all-tokens", help="Include tokens without a balance"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", help="Tokens per balance request"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Fetch token balances for one or more wallets.

    Examples:

        # Balances of an EVM wallet
        crosschain-portfolio balances --evm 0xABC...

        # EVM and Solana wallets together, as JSON
        crosschain-portfolio balances --evm 0xABC... --svm 7xKX... --format json
    """
    _configure_logging(debug)
    accounts = _build_accounts(evm, svm, utxo)
    if not accounts:
        console.print("[bold red]Error:[/bold red] pass at least one of --evm, --svm or --utxo")
        raise typer.Exit(code=1)

    settings = _load_settings(batch_size=batch_size)
    view = BalanceView.CATALOG if all_tokens else BalanceView.HOLDINGS

    try:
        snapshot = asyncio.run(_fetch_portfolio(settings, accounts, view))
    except PortfolioError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if debug:
            raise
        raise typer.Exit(code=1) from e

    if format == OutputFormat.JSON:
        _output_json(snapshot)
    else:
        _output_table(snapshot, accounts)


async def _load_catalog(settings: Settings, chain_type: ChainType) -> TokenCatalog:
    async with LiFiClient(settings.api_url, settings.api_key, settings.request_timeout) as lifi:
        tokens_map = await lifi.get_tokens_for_chain_types([chain_type])
    return TokenCatalog.from_tokens_map(tokens_map, settings.fetch.dedup_key)


@app.command()
def tokens(
    chain_type: ChainType = typer.Option(ChainType.EVM, "--chain-type", "-t", help="Ecosystem to list"),
    symbol: str | None = typer.Option(None, "--symbol", "-s", help="Only show this symbol"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """List consolidated tokens of an ecosystem."""
    _configure_logging(debug)
    settings = _load_settings()

    try:
        catalog = asyncio.run(_load_catalog(settings, chain_type))
    except PortfolioError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title=f"{chain_type} Tokens", show_header=True, header_style="bold magenta")
    table.add_column("Symbol", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Networks", style="green", justify="right")
    table.add_column("Price", style="yellow", justify="right")

    for token in catalog.filter(symbol=symbol):
        price = format_currency(parse_price(token.price_usd)) if token.price_usd else "-"
        table.add_row(token.symbol, token.name, str(len(token.networks)), price)

    console.print(table)


async def _list_chains(settings: Settings, chain_type: ChainType) -> list[Chain]:
    async with LiFiClient(settings.api_url, settings.api_key, settings.request_timeout) as lifi:
        return await lifi.list_chains(chain_type)


@app.command()
def chains(
    chain_type: ChainType = typer.Option(ChainType.EVM, "--chain-type", "-t", help="Ecosystem to list"),
) -> None:
    """List chains of an ecosystem and whether balances can be fetched on them."""
    settings = _load_settings()
    try:
        chain_list = asyncio.run(_list_chains(settings, chain_type))
    except PortfolioError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title=f"{chain_type} Chains", show_header=True, header_style="bold magenta")
    table.add_column("Chain", style="cyan")
    table.add_column("ID", style="white", justify="right")
    table.add_column("Status", style="green")

    for chain in chain_list:
        status = "✓ Active" if get_rpc_endpoints(chain.id) else "[dim]No endpoint[/dim]"
        table.add_row(chain.name, str(chain.id), status)

    console.print(table)


def chain_label(chain_id: int) -> str:
    """Configured chain name, or the raw ID for chains without one."""
    try:
        return get_chain_name(chain_id)
    except KeyError:
        return str(chain_id)


def _output_table(snapshot: PortfolioSnapshot, accounts: list[ConnectedAccount]) -> None:
    """Output portfolio as rich table."""
    if not snapshot.tokens:
        console.print("\n[yellow]No balances found[/yellow]")
        return

    wallets = ", ".join(abbreviate_address(account.address) for account in accounts)
    table = Table(title=f"Portfolio for {wallets}", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="cyan")
    table.add_column("Networks", style="blue", justify="right")
    table.add_column("Balance", style="white", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")

    for token in snapshot.tokens:
        total = "0"
        for balance in token.balances.values():
            total = add_decimal_strings(total, balance.formatted_amount)
        usd = format_currency(token.total_value_usd) if token.total_value_usd else "-"
        table.add_row(token.symbol, str(token.network_count), format_amount(total), usd)

    console.print("\n")
    console.print(table)

    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")
    summary_table.add_row("Total Value:", format_currency(snapshot.total_value_usd))
    summary_table.add_row("Total Tokens:", str(len(snapshot.tokens)))

    by_chain = value_by_chain(snapshot.tokens)
    if by_chain:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Chain:[/bold]", "")
        for chain_id, value in sorted(by_chain.items(), key=lambda item: item[1], reverse=True):
            summary_table.add_row(f"  {chain_label(chain_id)}", format_currency(value))

    console.print("\n")
    console.print(summary_table)

    for warning in snapshot.warnings:
        console.print(
            f"[yellow]Skipped {warning.token_count} tokens on {chain_label(warning.chain_id)} "
            f"after {warning.attempts} attempts:[/yellow] {warning.message}"
        )
    console.print("\n")


def _output_json(snapshot: PortfolioSnapshot) -> None:
    """Output portfolio as JSON."""
    data = snapshot.model_dump(mode="json")
    data["total_value_usd"] = snapshot.total_value_usd
    console.print_json(json.dumps(data))


if __name__ == "__main__":
    app()
