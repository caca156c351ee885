import os

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from . import decisions, prompts
from .bitwarden import BitwardenClient, new_item_payload, setup_instructions, updated_item_payload
from .config import CONFIG_FILE_NAME, Config, ConfigError, load_config
from .dotenvx import DotenvxAgent, extract_public_key, render_plain_env
from .envfiles import (
    backup_env_keys,
    env_file_name,
    env_name_from_key,
    find_all_env_files,
    get_env_keys,
    is_encrypted_content,
    merge_private_keys,
    parse_variable_names,
    private_key_name,
    remove_private_key,
    write_text_atomic,
)
from .models import KEYS_FILE_NAME, EnvFile
from .project import (
    detect_project,
    ensure_vercelignore,
    ignore_status,
    is_dotenvx_installed,
    patch_gitignore,
    patch_scripts,
)
from .runner import CommandError, _debug, run_batch
from .vercel import VercelClient, extract_deployment_url

app = typer.Typer()
console = Console()
error_console = Console(stderr=True)


class AppContext:
    """What every command needs: where the project is and how it is configured."""

    def __init__(self, project_dir: str, config: Config):
        self.project_dir = project_dir
        self.config = config

    def dotenvx(self) -> DotenvxAgent:
        return DotenvxAgent(
            self.project_dir,
            command=self.config.commands["dotenvx_command"],
            npm_command=self.config.commands["npm_command"],
        )

    def vercel(self) -> VercelClient:
        return VercelClient(self.project_dir, command=self.config.commands["vercel_command"])

    def bitwarden(self) -> BitwardenClient:
        return BitwardenClient(command=self.config.commands["bw_command"])


def _abort():
    console.print("[dim]Aborted[/dim]")
    raise typer.Exit()


def _print_steps(title: str, steps: list[str]):
    console.print(f"\n[bold]{title}[/]")
    for step in steps:
        console.print(f"  [dim]{step}[/dim]", highlight=False)


def _describe(env_file: EnvFile) -> str:
    status = "[green]✓ encrypted[/]" if env_file.is_encrypted else "[yellow]○ not encrypted[/]"
    if env_file.variables:
        more = "..." if len(env_file.variables) > 3 else ""
        variables = f" [dim]({', '.join(env_file.variables[:3])}{more})[/dim]"
    else:
        variables = " [dim](empty)[/dim]"
    return f"{env_file.file} {status}{variables}"


def _require_bitwarden(state: AppContext, command_name: str) -> BitwardenClient:
    client = state.bitwarden()
    with console.status("Checking Bitwarden CLI..."):
        bw_status = client.status()

    if bw_status.available and bw_status.logged_in:
        console.print("[green]✓[/] Bitwarden CLI ready")
        return client

    if not bw_status.available:
        error_console.print("[bold red]Error:[/] Bitwarden CLI not installed")
    else:
        error_console.print(f"[bold red]Error:[/] Bitwarden vault not accessible ({bw_status.status})")
    panel = Panel(
        "\n".join(escape(line) for line in setup_instructions(bw_status.status, bw_status.available, command_name))
        + "\n\nFor more info: https://bitwarden.com/help/cli/",
        title="[bold yellow]Bitwarden CLI Setup Required[/bold yellow]",
        border_style="yellow",
        expand=False,
    )
    error_console.print(panel)
    raise typer.Exit(code=1)


def _sync_vault(client: BitwardenClient, warning: str):
    with console.status("Syncing with Bitwarden server..."):
        try:
            client.sync()
        except CommandError as e:
            _debug(str(e))
            console.print(f"[yellow]![/] {warning}")
            return
    console.print("[green]✓[/] Synced with Bitwarden server")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    project_dir: str = typer.Option(".", "--dir", "-C", help="Project directory."),
    config_path: str = typer.Option(
        None, "--config", help=f"Path to the config file. Defaults to <dir>/{CONFIG_FILE_NAME}."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug output, including every command run."),
):
    """CLI for managing dotenvx encryption with Vercel deployment and Bitwarden integration."""
    if ctx.invoked_subcommand is None:
        welcome_message = (
            "[bold green]🔐 Welcome to dotenvx-deploy![/bold green]\n"
            "Encrypted .env files, deployed to Vercel, with keys backed up in Bitwarden.\n\n"
            "✨ [bold]Discover commands:[/bold] `dotenvx-deploy --help`\n"
            "🌱 [bold]Set up a project:[/bold] `dotenvx-deploy init`"
        )
        panel = Panel(
            welcome_message,
            title="[bold cyan]dotenvx-deploy[/bold cyan]",
            border_style="blue",
            expand=False,
        )
        console.print(panel)
        return

    if verbose:
        os.environ["DOTENVX_DEPLOY_DEBUG"] = "1"

    project_dir = os.path.abspath(project_dir)
    if not os.path.isdir(project_dir):
        error_console.print(f"[bold red]Error:[/] {escape(project_dir)} is not a directory.", soft_wrap=True)
        raise typer.Exit(code=1)

    try:
        config = load_config(config_path or os.path.join(project_dir, CONFIG_FILE_NAME))
    except ConfigError as e:
        error_console.print(f"[bold red]Error loading config file:[/] {escape(str(e))}")
        raise typer.Exit(code=1) from e

    _debug(f"Project directory: {project_dir}")
    ctx.obj = AppContext(project_dir, config)


@app.command(name="init")
def init_command(
    ctx: typer.Context,
    env: list[str] = typer.Option(None, "--env", "-e", help="Environments to set up (default: production)."),
    install: bool = typer.Option(True, "--install/--no-install", help="Install the dotenvx package if missing."),
    force: bool = typer.Option(False, "--force", help="Continue even if dotenvx is already set up."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-confirm all prompts (encrypt all found .env files)."),
):
    """Initialize dotenvx in a Next.js or Vite project."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    console.print("\n[bold]🔐 dotenvx-deploy init[/]\n")

    with console.status("Detecting project type..."):
        project = detect_project(cwd)
    if not project.is_known:
        error_console.print("[bold red]Error:[/] Could not detect project type")
        error_console.print("Supported project types: Next.js, Vite")
        error_console.print("[dim]Make sure you have a package.json with next or vite as a dependency[/dim]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/] Detected [cyan]{project.framework}[/] project")
    if project.name:
        console.print(f"  [dim]Project name: {escape(project.name)}[/dim]")

    installed = is_dotenvx_installed(cwd)
    if installed and not force and not yes:
        console.print("\n[yellow]⚠️  @dotenvx/dotenvx is already installed[/]")
        if not prompts.confirm("Continue with setup anyway?", default=True):
            _abort()

    agent = state.dotenvx()
    if not installed and install:
        with console.status("Installing @dotenvx/dotenvx..."):
            try:
                agent.install()
            except CommandError as e:
                error_console.print(f"[bold red]Error:[/] Failed to install @dotenvx/dotenvx\n{escape(str(e))}")
                raise typer.Exit(code=1) from e
        console.print("[green]✓[/] Installed @dotenvx/dotenvx")

    env_files = find_all_env_files(cwd)
    console.print(f"[green]✓[/] Found {len(env_files)} .env file(s)")

    selected: list[EnvFile] = []
    if env_files:
        console.print("\n[bold]Found environment files:[/]")
        for env_file in env_files:
            console.print(f"  {_describe(env_file)}")

        if yes:
            selected = decisions.files_to_encrypt(env_files)
            if selected:
                console.print(f"\n  [cyan]Auto-selecting {len(selected)} unencrypted file(s) for encryption[/]")
        else:
            indexes = prompts.select_many(
                "Select files to encrypt:",
                [_describe(f) for f in env_files],
                [not f.is_encrypted for f in env_files],
            )
            selected = decisions.files_to_encrypt(env_files, [env_files[i] for i in indexes])

        if not selected:
            console.print("\n  [dim]No files selected for encryption[/dim]")

    existing_names = [f.name for f in env_files]
    if not yes and prompts.confirm("Create any new environment files?", default=not env_files):
        choices = decisions.new_environment_choices(existing_names, state.config.environments)
        if not choices:
            console.print("  [dim]All standard environments already exist[/dim]")
        else:
            checked = decisions.default_new_environments(choices, env, existing_names)
            indexes = prompts.select_many("Select new environments to create:", choices, [c in checked for c in choices])
            for index in indexes:
                env_name = choices[index]
                file_name = env_file_name(env_name)
                path = os.path.join(cwd, file_name)
                content = prompts.edit_text(state.config.render_env_template(env_name))
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)
                console.print(f"  [green]✓[/] Created {file_name}")
                selected.append(EnvFile(file=file_name, name=env_name, path=path))

    if selected:
        console.print(f"\n[cyan]Encrypting {len(selected)} file(s)...[/]\n")

        def encrypt_one(env_file: EnvFile):
            with console.status(f"Encrypting {env_file.file}..."):
                agent.encrypt(env_file.file)
            console.print(f"[green]✓[/] Encrypted {env_file.file}")

        def report_failure(env_file: EnvFile, e: Exception):
            error_console.print(f"[red]✗[/] Failed to encrypt {env_file.file}\n  {escape(str(e))}")

        run_batch(selected, encrypt_one, isolate_failures=True, on_error=report_failure)

    all_env_names = list(dict.fromkeys(existing_names + [f.name for f in selected]))

    try:
        if patch_scripts(cwd, project):
            console.print("[green]✓[/] Updated package.json scripts")
        else:
            console.print("[green]✓[/] package.json scripts already configured")
    except (OSError, ValueError) as e:
        error_console.print(f"[red]✗[/] Failed to update package.json: {escape(str(e))}")

    try:
        if patch_gitignore(cwd, all_env_names):
            console.print("[green]✓[/] Updated .gitignore")
        else:
            console.print("[green]✓[/] .gitignore already configured")
    except OSError as e:
        error_console.print(f"[red]✗[/] Failed to update .gitignore: {escape(str(e))}")

    try:
        if ensure_vercelignore(cwd):
            console.print("[green]✓[/] Created .vercelignore")
    except OSError as e:
        error_console.print(f"[red]✗[/] Failed to create .vercelignore: {escape(str(e))}")

    if project.type == "nextjs":
        console.print("\n[yellow]📝 Next.js Setup Note:[/]")
        console.print("  [dim]For server components, swap process.env for dotenvx.get():[/dim]")
        console.print(
            "[cyan]    import * as dotenvx from '@dotenvx/dotenvx';\n"
            "    export default function Page() {\n"
            "      return <h1>Hello {dotenvx.get('HELLO')}</h1>;\n"
            "    }[/cyan]",
            highlight=False,
        )

    console.print("\n[bold green]✅ dotenvx initialized successfully![/]")
    _print_steps(
        "Next steps:",
        [
            "1. Review and commit your encrypted .env files",
            "2. Store your .env.keys securely (Bitwarden, 1Password, etc.)",
            "3. Run: dotenvx-deploy bw-save    # Save keys to Bitwarden",
            "4. Run: dotenvx-deploy deploy     # Deploy to Vercel",
        ],
    )

    keys_path = os.path.join(cwd, KEYS_FILE_NAME)
    if os.path.exists(keys_path):
        console.print(f"\n[yellow]⚠️  IMPORTANT: Back up your {KEYS_FILE_NAME} file![/]")
        console.print(f"   [dim]Location: {escape(keys_path)}[/dim]")


@app.command(name="encrypt")
def encrypt_command(
    ctx: typer.Context,
    env: str = typer.Option("production", "--env", "-e", help="Environment to encrypt."),
    key: str = typer.Option(None, "--key", "-k", help="Specific key to encrypt."),
    value: str = typer.Option(None, "--value", "-v", help="Value for the key (use with --key)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Create a missing file from the template and re-encrypt without asking."),
):
    """Encrypt environment variables."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    agent = state.dotenvx()
    console.print("\n[bold]🔐 dotenvx-deploy encrypt[/]\n")

    file_name = env_file_name(env)
    path = os.path.join(cwd, file_name)

    if (key is None) != (value is None):
        error_console.print("[bold red]Error:[/] --key and --value must be used together.")
        raise typer.Exit(code=1)

    if key is not None:
        _set_variable(agent, key, value, file_name)
        console.print(f"\n[green]✅ Variable encrypted and saved to {file_name}[/]")
        return

    if not os.path.exists(path):
        console.print(f"[yellow]{file_name} doesn't exist yet[/]")
        if not yes and not prompts.confirm(f"Create {file_name}?", default=True):
            _abort()
        template = state.config.render_env_template(env)
        content = template if yes else prompts.edit_text(template)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        console.print(f"[green]Created {file_name}[/]")

    with open(path, encoding="utf-8") as f:
        content = f.read()

    if is_encrypted_content(content) and not yes:
        console.print(f"\n[yellow]⚠️  {file_name} appears to already be encrypted[/]")
        actions = ["Add/update a specific variable", "Re-encrypt entire file", "Cancel"]
        action = prompts.select_one("What would you like to do?", actions)
        if action == 2:
            _abort()
        if action == 0:
            name = prompts.ask("Variable name")
            secret = prompts.ask("Variable value", hide_input=True)
            _set_variable(agent, name, secret, file_name)
            return

    with console.status(f"Encrypting {file_name}..."):
        try:
            agent.encrypt(file_name)
        except CommandError as e:
            error_console.print(f"[bold red]Error:[/] Failed to encrypt {file_name}\n{escape(str(e))}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/] Encrypted {file_name}")

    with open(path, encoding="utf-8") as f:
        public_key = extract_public_key(f.read())
    if public_key:
        console.print(f"\n[dim]Public key: {public_key[:20]}...[/dim]")

    console.print(f"\n[green]✅ {file_name} is now encrypted[/]")
    console.print("\n[dim]You can safely commit this file to version control[/dim]")
    console.print(f"\n[yellow]⚠️  Remember to backup your {KEYS_FILE_NAME} file![/]")


def _set_variable(agent: DotenvxAgent, key: str, value: str, file_name: str):
    with console.status(f"Setting {key} in {file_name}..."):
        try:
            agent.set(key, value, file_name)
        except CommandError as e:
            error_console.print(f"[bold red]Error:[/] Failed to set {key}\n{escape(str(e))}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/] Set {key} in {file_name}")


class RotationError(Exception):
    pass


def _rotate_environment(state: AppContext, env_name: str):
    """Decrypts, strips the old key and re-encrypts one environment.

    Cleartext only ever replaces the file through an atomic rename, and if
    re-encryption fails the previous ciphertext and key line are put back.
    """
    cwd = state.project_dir
    agent = state.dotenvx()
    file_name = env_file_name(env_name)
    path = os.path.join(cwd, file_name)
    key_name = private_key_name(env_name)

    with open(path, encoding="utf-8") as f:
        original = f.read()
    old_key = get_env_keys(cwd).get(key_name)

    with console.status("Decrypting current values..."):
        values = agent.decrypt_values(file_name)
    if not values and parse_variable_names(original):
        raise RotationError(f"dotenvx returned no values for {file_name}; leaving it untouched")
    console.print("  [green]✓[/] Decrypted current values")

    try:
        write_text_atomic(path, render_plain_env(env_name, values))
        remove_private_key(cwd, key_name)
        with console.status("Generating new encryption keys..."):
            agent.encrypt(file_name)
    except (CommandError, OSError):
        write_text_atomic(path, original)
        if old_key:
            merge_private_keys(cwd, {key_name: old_key})
        console.print(f"  [yellow]Restored previous {file_name} and {key_name}[/]")
        raise
    console.print("  [green]✓[/] Generated new encryption keys")


@app.command(name="rotate")
def rotate_command(
    ctx: typer.Context,
    env: str = typer.Option(None, "--env", "-e", help="Environment to rotate."),
    all_envs: bool = typer.Option(False, "--all", help="Rotate keys for all environments."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Rotate encryption keys for an environment."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    console.print("\n[bold]🔄 dotenvx-deploy rotate[/]\n")

    environments = [f.name for f in find_all_env_files(cwd)]
    if not environments:
        error_console.print("[yellow]No encrypted environments found[/]")
        error_console.print("\n[dim]Run `dotenvx-deploy init` to set up encryption[/dim]")
        raise typer.Exit(code=1)

    try:
        targets = decisions.rotation_targets(environments, env, all_envs)
    except ValueError as e:
        error_console.print(f"[bold red]Error:[/] {escape(str(e))}")
        error_console.print("\n[dim]Available environments:[/dim]")
        for name in environments:
            error_console.print(f"  [dim]- {name}[/dim]")
        raise typer.Exit(code=1) from e

    if targets is None:
        if yes:
            targets = ["production"] if "production" in environments else environments
        else:
            indexes = prompts.select_many(
                "Select environments to rotate:",
                environments,
                [e == "production" for e in environments],
                require_one=True,
            )
            targets = [environments[i] for i in indexes]

    console.print("\n[yellow]⚠️  Key rotation will:[/]")
    console.print("  [dim]1. Generate new encryption keys[/dim]")
    console.print("  [dim]2. Re-encrypt all variables with new keys[/dim]")
    console.print(f"  [dim]3. Update {KEYS_FILE_NAME} file[/dim]")
    console.print("\n  [red]Old keys will no longer work![/]")

    if not yes and not prompts.confirm(f"Rotate keys for {', '.join(targets)}?", default=False):
        _abort()

    backup_path = backup_env_keys(cwd)
    if backup_path:
        console.print(f"\n[dim]Backed up current keys to {escape(backup_path)}[/dim]")

    def rotate_one(env_name: str):
        console.print(f"\n[cyan]Rotating {env_file_name(env_name)}...[/]")
        _rotate_environment(state, env_name)
        console.print(f"[green]✓ Rotated keys for {env_name}[/]")

    def report_failure(env_name: str, e: Exception):
        error_console.print(f"[red]✗[/] Failed to rotate {env_name}\n{escape(str(e))}")
        error_console.print("[yellow]Recovery:[/]")
        error_console.print(f"  [dim]1. Check if {KEYS_FILE_NAME}.backup.* exists[/dim]")
        error_console.print("  [dim]2. Restore from backup if needed[/dim]")

    results = run_batch(
        targets,
        rotate_one,
        isolate_failures=True,
        on_error=report_failure,
        errors=(CommandError, OSError, RotationError),
    )
    failed = [r.item for r in results if not r.ok]

    if failed:
        console.print(f"\n[bold yellow]⚠️  Key rotation finished with failures: {', '.join(failed)}[/]")
    else:
        console.print("\n[bold green]✅ Key rotation complete![/]")
    _print_steps(
        "Next steps:",
        [
            f"1. Backup new {KEYS_FILE_NAME} file",
            "2. Run: dotenvx-deploy bw-save    # Update Bitwarden",
            "3. Run: dotenvx-deploy deploy     # Update Vercel",
            "4. Commit updated .env.* files",
        ],
    )
    console.print("\n[yellow]⚠️  Important:[/]")
    console.print("  [dim]Existing deployments will fail until you update the private keys[/dim]")
    console.print("  [dim]Run `dotenvx-deploy deploy` for each rotated environment[/dim]")


@app.command(name="deploy")
def deploy_command(
    ctx: typer.Context,
    env: str = typer.Option("production", "--env", "-e", help="Environment to deploy."),
    prod: bool = typer.Option(False, "--prod", help="Deploy to production."),
    preview: bool = typer.Option(False, "--preview", help="Deploy to preview only."),
    deploy: bool | None = typer.Option(None, "--deploy/--no-deploy", help="Trigger a deployment after setting the key."),
):
    """Deploy encrypted environment to Vercel."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    vercel = state.vercel()
    console.print("\n[bold]🚀 dotenvx-deploy deploy[/]\n")

    with console.status("Checking Vercel CLI..."):
        available = vercel.is_available()
    if not available:
        error_console.print("[bold red]Error:[/] Vercel CLI not found")
        error_console.print("\n[yellow]Install Vercel CLI:[/]\n  [cyan]npm install -g vercel[/]")
        raise typer.Exit(code=1)
    console.print("[green]✓[/] Vercel CLI available")

    key_store = get_env_keys(cwd)
    if not key_store.exists:
        error_console.print(f"[bold red]Error:[/] No {KEYS_FILE_NAME} file found")
        error_console.print("\n[yellow]Run `dotenvx-deploy init` first to set up encryption[/]")
        raise typer.Exit(code=1)

    key_name = private_key_name(env)
    private_key = key_store.get(key_name)
    if not private_key:
        error_console.print(f"[bold red]Error:[/] No private key found for {env} environment")
        error_console.print(f"   [dim]Expected key: {key_name}[/dim]")
        error_console.print("\n[yellow]Available keys:[/]")
        for name in key_store.keys:
            error_console.print(f"   [dim]- {name}[/dim]")
        raise typer.Exit(code=1)

    file_name = env_file_name(env)
    path = os.path.join(cwd, file_name)
    if not os.path.exists(path):
        error_console.print(f"[bold red]Error:[/] {file_name} not found")
        error_console.print("\n[yellow]Run `dotenvx-deploy encrypt` first[/]")
        raise typer.Exit(code=1)

    with open(path, encoding="utf-8") as f:
        encrypted = is_encrypted_content(f.read())
    if not encrypted:
        console.print(f"\n[yellow]⚠️  {file_name} doesn't appear to be encrypted[/]")
        if not prompts.confirm("Continue anyway?", default=False):
            _abort()

    scope = state.config.vercel_scope(env)
    console.print(f"\n[cyan]Deploying {env} environment to Vercel...[/]\n")
    with console.status(f"Setting {key_name} in Vercel..."):
        try:
            replaced = vercel.set_env(key_name, scope, private_key)
        except CommandError as e:
            error_console.print(f"[bold red]Error:[/] Failed to set {key_name}\n{escape(str(e))}")
            error_console.print("\n[yellow]Manual setup:[/]")
            error_console.print("  [dim]1. Go to your Vercel project settings[/dim]")
            error_console.print("  [dim]2. Navigate to Environment Variables[/dim]")
            error_console.print(f"  [dim]3. Add {key_name} ({scope}) with the value from {KEYS_FILE_NAME}[/dim]")
            raise typer.Exit(code=1) from e
    action = "Replaced" if replaced else "Set"
    console.print(f"[green]✓[/] {action} {key_name} for {scope} environment")

    if deploy is None:
        deploy = prompts.confirm("Deploy to Vercel now?", default=True)

    if deploy:
        with console.status("Deploying to Vercel..."):
            try:
                result = vercel.deploy(prod=decisions.deploy_to_production(env, prod, preview))
            except CommandError as e:
                error_console.print(f"[bold red]Error:[/] Deployment failed\n{escape(str(e))}")
                raise typer.Exit(code=1) from e
        console.print("[green]✓[/] Deployed to Vercel")

        url = extract_deployment_url(result.stdout)
        if url:
            console.print(f"\n[green]🌐 Deployment URL: [cyan]{url}[/cyan][/green]")
        console.print("\n[dim]View full output:[/dim]")
        console.print(escape(result.stdout), highlight=False)

    console.print("\n[bold green]✅ Environment deployed successfully![/]")
    _print_steps(
        "Your app will now:",
        [
            f"1. Read encrypted values from {file_name}",
            f"2. Decrypt them using {key_name}",
            "3. Inject variables at runtime",
        ],
    )


@app.command(name="bw-save")
def bw_save_command(
    ctx: typer.Context,
    env: str = typer.Option(None, "--env", "-e", help="Environment to save (default: all)."),
    folder: str = typer.Option(None, "--folder", help="Bitwarden folder name."),
    name: str = typer.Option(None, "--name", help="Save as a named version (<project>/<env>/<name>)."),
    note: str = typer.Option(None, "--note", help="Free-text note stored with the key."),
):
    """Save private keys to Bitwarden."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    folder_name = folder or state.config.folder
    console.print("\n[bold]🔑 dotenvx-deploy bw-save[/]\n")

    client = _require_bitwarden(state, "bw-save")

    project = detect_project(cwd)
    if not project.name:
        console.print("\n[yellow]⚠️  No project name found in package.json[/]")
        console.print("    [dim]Keys will be saved with generic names[/dim]")

    key_store = get_env_keys(cwd)
    if not key_store.exists or not key_store.keys:
        error_console.print(f"[bold red]Error:[/] No {KEYS_FILE_NAME} file found or no keys present")
        error_console.print("\n[yellow]Run `dotenvx-deploy init` first[/]")
        raise typer.Exit(code=1)

    try:
        to_save = decisions.keys_to_save(key_store, env)
    except KeyError as e:
        error_console.print(f"[bold red]Error:[/] No key found for environment: {env}")
        error_console.print("\n[dim]Available keys:[/dim]")
        for key_name in key_store.keys:
            error_console.print(f"  [dim]- {key_name}[/dim]")
        raise typer.Exit(code=1) from e

    console.print(f"\n[cyan]Saving {len(to_save)} key(s) to Bitwarden...[/]\n")

    with console.status(f'Finding folder "{folder_name}"...'):
        try:
            folder_id, created = client.get_or_create_folder(folder_name)
        except CommandError as e:
            error_console.print(f"[bold red]Error:[/] Failed to access Bitwarden folders\n{escape(str(e))}")
            raise typer.Exit(code=1) from e
    console.print(f'[green]✓[/] {"Created" if created else "Found"} folder "{folder_name}"')

    item_names = {
        key_name: state.config.render_item_name(project.name, env_name_from_key(key_name), name)
        for key_name in to_save
    }

    def save_one(key_name: str):
        env_name = env_name_from_key(key_name)
        item_name = item_names[key_name]
        with console.status(f"Saving {key_name}..."):
            existing = client.find_item(folder_id, item_name)
            if existing:
                payload = updated_item_payload(existing, to_save[key_name], env_name, project.name, note, name)
                client.edit_item(existing.item_id, payload)
            else:
                payload = new_item_payload(
                    folder_id, item_name, to_save[key_name], env_name, project.name, note, name
                )
                client.create_item(payload)
        console.print(f"[green]✓[/] {'Updated' if existing else 'Created'} {key_name} ({escape(item_name)})")

    def report_failure(key_name: str, e: Exception):
        error_console.print(f"[red]✗[/] Failed to save {key_name}\n  {escape(str(e))}")

    results = run_batch(list(to_save), save_one, isolate_failures=True, on_error=report_failure)

    _sync_vault(client, "Sync may have failed, but keys were saved locally")

    saved = [r.item for r in results if r.ok]
    if not saved:
        error_console.print("[bold red]Error:[/] No keys were saved")
        raise typer.Exit(code=1)

    console.print("\n[bold green]✅ Keys saved to Bitwarden![/]")
    _print_steps("Keys are stored in:", [f"Folder: {folder_name}"] + [f"Item: {item_names[k]}" for k in saved])
    console.print("\n[yellow]💡 Tip: Use `dotenvx-deploy bw-pull` to restore keys on another machine[/]")


@app.command(name="bw-pull")
def bw_pull_command(
    ctx: typer.Context,
    env: str = typer.Option(None, "--env", "-e", help="Environment to pull (default: all)."),
    folder: str = typer.Option(None, "--folder", help="Bitwarden folder name."),
    name: str = typer.Option(None, "--name", help="Pull a specific saved version."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Pick the newest version and merge without asking."),
):
    """Pull private keys from Bitwarden."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    folder_name = folder or state.config.folder
    console.print("\n[bold]🔑 dotenvx-deploy bw-pull[/]\n")

    client = _require_bitwarden(state, "bw-pull")
    _sync_vault(client, "Sync may have failed, using local cache")

    try:
        with console.status(f'Finding folder "{folder_name}"...'):
            folder_id = client.find_folder(folder_name)
        if not folder_id:
            error_console.print(f'[bold red]Error:[/] Folder "{folder_name}" not found')
            error_console.print("\n[yellow]Make sure you have saved keys first:[/]\n  [cyan]dotenvx-deploy bw-save[/]")
            raise typer.Exit(code=1)
        console.print(f'[green]✓[/] Found folder "{folder_name}"')

        with console.status("Searching for keys..."):
            items = client.list_items(folder_id)
    except CommandError as e:
        error_console.print(f"[bold red]Error:[/] Failed to retrieve keys\n{escape(str(e))}")
        raise typer.Exit(code=1) from e

    if not items:
        error_console.print("[bold red]Error:[/] No keys found in folder")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/] Found {len(items)} item(s)")

    project_name = detect_project(cwd).name
    candidates = decisions.project_items(items, project_name)
    if not candidates:
        console.print(f'\n[yellow]No keys found for project "{escape(project_name)}"[/]')
        console.print("\n[dim]Available items:[/dim]")
        for item in items:
            console.print(f"  [dim]- {escape(item.name)}[/dim]")
        if not yes and not prompts.confirm("Show all items?", default=True):
            raise typer.Exit()
        candidates = items

    candidates = decisions.matching_items(candidates, env=env, version=name)
    if not candidates:
        wanted = ", ".join(f"{label}: {v}" for label, v in (("environment", env), ("version", name)) if v)
        error_console.print(f"[bold red]Error:[/] No keys found for {wanted}")
        raise typer.Exit(code=1)

    chosen = []
    for env_name, env_items in decisions.group_by_environment(candidates).items():
        if len(env_items) == 1 or yes:
            chosen.append(decisions.latest_item(env_items))
            continue
        labels = [f"{i.name} ({i.timestamp or 'no date'})" for i in env_items]
        latest = env_items.index(decisions.latest_item(env_items))
        index = prompts.select_one(f"Several keys found for {env_name}. Which one?", labels, default=latest)
        chosen.append(env_items[index])

    if len(chosen) > 1 and not yes:
        labels = [f"{escape(i.environment)} [dim]({escape(i.name)})[/dim]" for i in chosen]
        indexes = prompts.select_many("Select keys to pull:", labels, [True] * len(chosen), require_one=True)
        chosen = [chosen[i] for i in indexes]

    keys, skipped = decisions.keys_from_items(chosen)
    for item in skipped:
        console.print(f"  [yellow]⚠️  No key value found in {escape(item.name)}[/]")
    for key_name in keys:
        console.print(f"  [dim]Found {key_name}[/dim]")

    if not keys:
        error_console.print("[bold red]Error:[/] No valid keys to write")
        raise typer.Exit(code=1)

    if get_env_keys(cwd).exists and not yes:
        if not prompts.confirm(f"{KEYS_FILE_NAME} already exists. Merge/overwrite?", default=True):
            _abort()

    try:
        merge_private_keys(cwd, keys)
    except OSError as e:
        error_console.print(f"[bold red]Error:[/] Failed to write {KEYS_FILE_NAME}: {escape(str(e))}")
        raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/] Written {KEYS_FILE_NAME}")

    console.print("\n[bold green]✅ Keys pulled from Bitwarden![/]")
    _print_steps("Restored keys:", [f"- {k}" for k in keys])
    console.print(f"\n[yellow]⚠️  Remember: {KEYS_FILE_NAME} should NOT be committed to version control[/]")


@app.command(name="bw-list")
def bw_list_command(
    ctx: typer.Context,
    folder: str = typer.Option(None, "--folder", help="Bitwarden folder name."),
    all_projects: bool = typer.Option(False, "--all", help="Show keys of all projects."),
):
    """List saved keys in Bitwarden."""
    state: AppContext = ctx.obj
    folder_name = folder or state.config.folder
    console.print("\n[bold]📋 dotenvx-deploy bw-list[/]\n")

    client = _require_bitwarden(state, "bw-list")
    _sync_vault(client, "Sync may have failed, using local cache")

    try:
        folder_id = client.find_folder(folder_name)
        items = client.list_items(folder_id) if folder_id else []
    except CommandError as e:
        error_console.print(f"[bold red]Error:[/] Failed to retrieve keys\n{escape(str(e))}")
        raise typer.Exit(code=1) from e

    if not folder_id or not items:
        reason = f'Folder "{folder_name}" not found' if not folder_id else "No keys found"
        console.print(f"[yellow]{reason}[/]")
        console.print("\n[yellow]No keys have been saved yet.[/]\n  [cyan]dotenvx-deploy bw-save[/]")
        raise typer.Exit()

    console.print(f"[green]✓[/] Found {len(items)} item(s)")

    display = items
    project_name = detect_project(state.project_dir).name
    if project_name and not all_projects:
        project_only = decisions.project_items(items, project_name)
        if project_only:
            display = project_only
            console.print(f"\n[dim]Showing keys for project: {escape(project_name)}[/dim]")
            console.print("[dim]Use --all to show all projects[/dim]")

    groups = decisions.group_by_project(display)
    for project, environments in groups.items():
        console.print(f"\n[bold cyan]{escape(project)}/[/]")
        for env_name, env_items in environments.items():
            if len(env_items) == 1:
                console.print(f"  {escape(env_name)}{_item_details(env_items[0])}", highlight=False)
                continue
            console.print(f"  {escape(env_name)} [yellow]{escape(f'[{len(env_items)} versions]')}[/]")
            for item in env_items:
                label = item.version or item.name.split("/")[-1]
                console.print(f"    └─ [dim]{escape(label)}[/dim]{_item_details(item)}", highlight=False)

    console.print(f"\n[dim]{len(display)} key(s) in {len(groups)} project(s)[/dim]")
    _print_steps(
        "💡 Commands:",
        [
            "bw-save --name <version>   Save as a new version",
            "bw-pull --name <version>   Pull a specific version",
        ],
    )


def _item_details(item) -> str:
    details = ""
    note = item.fields.get("note")
    if note:
        details += f' [dim]- "{escape(note)}"[/dim]'
    if item.timestamp:
        details += f" [dim]({escape(item.timestamp[:10])})[/dim]"
    return details


@app.command(name="status")
def status_command(ctx: typer.Context):
    """Show current encryption and deployment status."""
    state: AppContext = ctx.obj
    cwd = state.project_dir
    console.print("\n[bold]📊 dotenvx-deploy status[/]\n")

    project = detect_project(cwd)
    console.print("[bold]Project:[/]")
    if project.is_known:
        console.print(f"  [dim]Type:[/dim] [cyan]{project.framework}[/]")
    else:
        console.print("  [yellow]Type: Unknown (not a Next.js or Vite project)[/]")
    if project.name:
        console.print(f"  [dim]Name:[/dim] [cyan]{escape(project.name)}[/]")

    installed = is_dotenvx_installed(cwd)
    mark = "[green]✓ installed[/]" if installed else "[yellow]✗ not installed[/]"
    console.print(f"  [dim]dotenvx:[/dim] {mark}")

    console.print("\n[bold]Environments:[/]")
    env_files = find_all_env_files(cwd)
    if not env_files:
        console.print("  [yellow]No .env files found[/]")
    for env_file in env_files:
        mark = "[green]✓ encrypted[/]" if env_file.is_encrypted else "[yellow]✗ not encrypted[/]"
        console.print(f"  {env_file.file}: {mark} ({env_file.var_count} variables)")

    console.print("\n[bold]Encryption Keys:[/]")
    key_store = get_env_keys(cwd)
    if not key_store.exists:
        console.print(f"  [yellow]No {KEYS_FILE_NAME} file found[/]")
    else:
        console.print(f"  {KEYS_FILE_NAME}: [green]✓ exists[/] ({len(key_store)} private key(s))")
        for env_name in decisions.missing_key_environments(env_files, key_store):
            console.print(f"    [yellow]⚠️  Missing key for {env_name} environment[/]")

    console.print("\n[bold]External Tools:[/]")
    with console.status("Checking Vercel CLI..."):
        vercel_available = state.vercel().is_available()
    mark = "[green]✓ available[/]" if vercel_available else "[yellow]✗ not available[/]"
    console.print(f"  Vercel CLI: {mark}")

    with console.status("Checking Bitwarden CLI..."):
        bw_status = state.bitwarden().status()
    if not bw_status.available:
        console.print("  Bitwarden CLI: [yellow]✗ not installed[/]")
    elif not bw_status.logged_in:
        console.print(f"  Bitwarden CLI: [yellow]✓ installed ({bw_status.status})[/]")
    else:
        console.print("  Bitwarden CLI: [green]✓ unlocked[/]")

    console.print("\n[bold]Security:[/]")
    for ignore_file, protects in ignore_status(cwd).items():
        if protects is None:
            console.print(f"  [yellow]No {ignore_file} file found[/]")
        else:
            mark = "[green]✓ yes[/]" if protects else "[red]✗ NO - ADD IT![/]"
            console.print(f"  {ignore_file} protects {KEYS_FILE_NAME}: {mark}")

    console.print("\n[bold]Recommendations:[/]")
    recs = decisions.recommendations(installed, env_files, key_store, bw_status.available, bw_status.logged_in)
    if not recs:
        console.print("  [green]✓ Everything looks good![/]")
    for rec in recs:
        console.print(f"  [yellow]• {rec}[/]", highlight=False)
    console.print()


if __name__ == "__main__":
    app()
