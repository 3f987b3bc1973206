import yaml
from rich.prompt import Prompt, Confirm
from rich.console import Console
from rich.panel import Panel

from . import config
from . import banks
from .models import Config, MatchPolicy
from .storage import Workspace
from .i18n import t, SUPPORTED_LANGS

console = Console()


def run_setup_wizard(workspace: Workspace) -> Config:
    console.print(Panel.fit(t("cli.setup.title"), style="bold blue"))
    current = config.settings.config

    # Step 1: Language
    console.print(f"\n[bold]{t('cli.setup.step1_title')}[/bold]")
    lang = Prompt.ask(
        t("cli.setup.step1_prompt"),
        choices=list(SUPPORTED_LANGS),
        default=current.lang or config.settings.i18n.lang,
    )
    config.settings.i18n.set_language(lang)

    # Step 2: Default bank for records that name none
    console.print(f"\n[bold]{t('cli.setup.step2_title')}[/bold]")
    codes = [s.code for s in banks.KNOWN_BANKS]
    for i, code in enumerate(codes, 1):
        console.print(f"{i}. {banks.get(code).display_name}")
    default_bank = Prompt.ask(
        t("cli.setup.step2_prompt"),
        choices=codes,
        default=config.settings.default_bank if config.settings.default_bank in codes else codes[1],
        show_choices=False,
    )
    console.print(t("cli.setup.selected", value=default_bank))

    # Step 3: Duplicate labels in one block
    console.print(f"\n[bold]{t('cli.setup.step3_title')}[/bold]")
    first_wins = Confirm.ask(t("cli.setup.step3_prompt"), default=current.match_policy == MatchPolicy.FIRST)

    new_config = current.model_copy(update={
        "lang": lang,
        "default_bank": default_bank,
        "match_policy": MatchPolicy.FIRST if first_wins else MatchPolicy.LAST,
    })

    workspace.system.mkdir(parents=True, exist_ok=True)
    with open(workspace.config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(new_config.model_dump(mode="json", exclude_none=True), f, sort_keys=False)
    config.settings.config = new_config

    console.print(f"\n{t('cli.setup.saved', path=workspace.config_path)}")
    console.print(t("cli.setup.ready"))
    return new_config
