"""Message content and keyboards shown by the conversation handler."""

from __future__ import annotations

from html import escape

from solsmith.core.types import Action, PatternKind
from solsmith.errors import GenerationError, GenerationFailure
from solsmith.messenger.models import Button, OutgoingMessage
from solsmith.storage.models import KeyRecord

HTML = "html"
RULE = "━━━━━━━━━━━━━━━━━━━━━━"

WALLETS_PER_PAGE = 20
MAX_IDENTIFIER_LENGTH = 64
WALLET_PAGE_PREFIX = "wallets_page:"

BACK_ROW = (Button("⬅️ Back to Main Menu", Action.BACK_TO_MAIN),)

_PATTERN_LABELS = {
    PatternKind.PREFIX: "starts with",
    PatternKind.SUFFIX: "ends with",
}


def intro() -> OutgoingMessage:
    text = (
        "🌟 <b>Welcome to SOL SMITH</b> 🌟\n"
        f"{RULE}\n\n"
        "Your premium Solana wallet generator with custom address patterns.\n\n"
        "<b>Available Commands:</b>\n"
        "• /start - Display this welcome message\n"
        "• /help - Show detailed help information\n\n"
        "<b>Features:</b>\n"
        "• Create wallets with custom address patterns\n"
        "• Store and manage multiple wallets\n"
        "• View wallet details anytime\n"
        f"{RULE}"
    )
    return OutgoingMessage(text=text, parse_mode=HTML)


def main_menu(display_name: str) -> OutgoingMessage:
    return OutgoingMessage(
        text=(
            f"Welcome {escape(display_name)}! 👋\n"
            "Use the buttons below to manage your Solana wallets."
        ),
        parse_mode=HTML,
        buttons=(
            (
                Button("Create Solana Wallet", Action.CREATE_WALLET),
                Button("View My Wallets", Action.VIEW_WALLETS),
            ),
        ),
    )


def help_text() -> OutgoingMessage:
    text = (
        "<b>SOL SMITH - Advanced Help</b>\n"
        f"{RULE}\n\n"
        "<b>Wallet Creation Options:</b>\n"
        "• <b>Starts With</b> - an address beginning with your chosen characters\n"
        "• <b>Ends With</b> - an address ending with your chosen characters\n\n"
        "<b>Tips for Pattern Selection:</b>\n"
        "• Shorter patterns (2-3 chars) generate quickly\n"
        "• Longer patterns may take significant time\n"
        "• Case-sensitive (upper/lowercase matters)\n"
        "• Only use valid Solana address characters (no 0, O, I or l)\n\n"
        "<b>Security Notes:</b>\n"
        "• Never share your private keys\n"
        "• Back up your wallet information\n"
        f"{RULE}"
    )
    return OutgoingMessage(text=text, parse_mode=HTML, buttons=(BACK_ROW,))


def pattern_chooser() -> OutgoingMessage:
    return OutgoingMessage(
        text="How should your new wallet address match your pattern?",
        parse_mode=HTML,
        buttons=(
            (
                Button("Starts with", Action.PATTERN_PREFIX),
                Button("Ends with", Action.PATTERN_SUFFIX),
            ),
            BACK_ROW,
        ),
    )


def pattern_prompt(kind: PatternKind, problem: str | None = None) -> OutgoingMessage:
    lines = []
    if problem:
        lines.append(f"⚠️ {escape(problem)}\n")
    lines.append(f"Please enter the characters your address {_PATTERN_LABELS[kind]}:")
    return OutgoingMessage(text="\n".join(lines), parse_mode=HTML, buttons=(BACK_ROW,))


def generating(kind: PatternKind, pattern: str) -> OutgoingMessage:
    return OutgoingMessage(
        text=(
            "⏳ Generating Solana wallet whose address "
            f"{_PATTERN_LABELS[kind]} <code>{escape(pattern)}</code>...\n"
            "Longer patterns can take a while."
        ),
        parse_mode=HTML,
        buttons=(BACK_ROW,),
    )


def generation_result(record: KeyRecord, saved: bool = True) -> OutgoingMessage:
    text = (
        "✅ <b>New Wallet Generated</b>\n\n"
        f"Public Key:\n<code>{escape(record.public_identifier)}</code>\n\n"
        f"Private Key:\n<code>{escape(record.secret_material)}</code>"
    )
    if not saved:
        text += "\n\n⚠️ This wallet could not be saved. Copy the private key now."
    return OutgoingMessage(
        text=text,
        parse_mode=HTML,
        buttons=(BACK_ROW,),
    )


def generation_failed(error: GenerationError) -> OutgoingMessage:
    if error.failure is GenerationFailure.TIMEOUT:
        reason = "Generation took too long. Try a shorter pattern."
    else:
        reason = "Error generating wallet. Please try again."
    return OutgoingMessage(
        text=f"❌ {reason}",
        parse_mode=HTML,
        buttons=(
            (Button("Try Again", Action.CREATE_WALLET),),
            BACK_ROW,
        ),
    )


def storage_failed() -> OutgoingMessage:
    return OutgoingMessage(
        text="❌ Could not access your wallet records. Please try again in a moment.",
        parse_mode=HTML,
        buttons=(BACK_ROW,),
    )


def no_wallets() -> OutgoingMessage:
    return OutgoingMessage(
        text='You have no wallets yet. Click "Create Solana Wallet" to generate one.',
        parse_mode=HTML,
        buttons=(
            (Button("Create Solana Wallet", Action.CREATE_WALLET),),
            BACK_ROW,
        ),
    )


def page_token(page: int) -> str:
    return f"{WALLET_PAGE_PREFIX}{page}"


def page_count(total: int) -> int:
    return max(1, -(-total // WALLETS_PER_PAGE))


def wallet_list(
    wallets: list[KeyRecord], page: int = 0, problem: str | None = None
) -> OutgoingMessage:
    """One page of the user's wallets, numbered across all pages."""
    pages = page_count(len(wallets))
    page = min(max(page, 0), pages - 1)
    start = page * WALLETS_PER_PAGE

    header = "<b>Your Wallets:</b>"
    if pages > 1:
        header = f"<b>Your Wallets</b> (page {page + 1} of {pages}):"
    lines = [header, ""]
    for index, wallet in enumerate(wallets[start : start + WALLETS_PER_PAGE], start=start + 1):
        lines.append(f"{index}. <code>{escape(_shorten(wallet.public_identifier))}</code>")
    lines.append("")
    if problem:
        lines.append(f"⚠️ {escape(problem)}")
    lines.append("Enter the number of the wallet to view its private key:")

    nav = []
    if page > 0:
        nav.append(Button("◀️ Previous", page_token(page - 1)))
    if page < pages - 1:
        nav.append(Button("Next ▶️", page_token(page + 1)))
    buttons = (tuple(nav), BACK_ROW) if nav else (BACK_ROW,)
    return OutgoingMessage(text="\n".join(lines), parse_mode=HTML, buttons=buttons)


def display_failed() -> OutgoingMessage:
    return OutgoingMessage(
        text="❌ Something went wrong showing that screen. Please try again.",
        parse_mode=HTML,
        buttons=(BACK_ROW,),
    )


def _shorten(identifier: str) -> str:
    if len(identifier) <= MAX_IDENTIFIER_LENGTH:
        return identifier
    return identifier[: MAX_IDENTIFIER_LENGTH - 1] + "…"


def wallet_detail(number: int, wallet: KeyRecord) -> OutgoingMessage:
    return OutgoingMessage(
        text=(
            f"<b>Selected Wallet #{number}</b>\n\n"
            f"Public Key:\n<code>{escape(wallet.public_identifier)}</code>\n\n"
            f"Private Key:\n<code>{escape(wallet.secret_material)}</code>\n\n"
            f"Pattern: {_PATTERN_LABELS[wallet.pattern_kind]} "
            f"<code>{escape(wallet.pattern_value)}</code>\n"
            f"Created: {wallet.created_at:%Y-%m-%d %H:%M} UTC"
        ),
        parse_mode=HTML,
        buttons=(BACK_ROW,),
    )
