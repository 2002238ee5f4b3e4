# app.py
# Discord padel bot: singles/doubles submission, rating preview, confirmation and finalization

from __future__ import annotations

import discord
from discord import app_commands

import fmt
from padel_rank.config import Settings
from padel_rank.db import SqliteStore
from padel_rank.errors import RatingError
from padel_rank.logging_config import get_logger, setup_logging
from padel_rank.models import MatchStatus, MatchType, RatingProjection
from padel_rank.rules import parse_score
from padel_rank.workflow import MatchService

setup_logging()
log = get_logger("padel_rank.app")

# --- Env / Config ---
settings = Settings.from_env()
store = SqliteStore(settings.database_path, default_rating=settings.default_rating)
service = MatchService(
    store,
    leaderboard_page_size=settings.leaderboard_page_size,
    momentum_window=settings.momentum_window,
)

ALLOWED_MENTIONS = discord.AllowedMentions(users=True, roles=False, everyone=False)

CATEGORY_CHOICES = [
    app_commands.Choice(name=f"{name.replace('_', ' ')} (K={k})", value=name)
    for name, k in MatchService.category_weights().items()
]

# Intents
intents = discord.Intents.none()
intents.guilds = True

# Discord client + tree
bot = discord.Client(intents=intents)
tree = app_commands.CommandTree(bot)


# --- Helpers ---
async def _names(guild: discord.Guild | None, ids: list[int]) -> dict[int, str]:
    return {uid: await fmt.display_name_or_cached(bot, guild, uid) for uid in ids}


async def _fail(inter: discord.Interaction, e: RatingError) -> None:
    msg = f"❌ {e}"
    if inter.response.is_done():
        await inter.followup.send(msg, ephemeral=True)
    else:
        await inter.response.send_message(msg, ephemeral=True)


async def _projection_text(inter: discord.Interaction, p: RatingProjection) -> str:
    names = await _names(inter.guild, [i.user_id for i in p.items])
    return fmt.projection_lines(p, names)


async def _preview(inter: discord.Interaction, mtype: MatchType, team1: list[int], team2: list[int], score: str, category: str):
    try:
        sets = parse_score(score)
        p = await service.preview(mtype, category, sets, team1, team2)
    except RatingError as e:
        return await _fail(inter, e)
    text = await _projection_text(inter, p)
    await inter.response.send_message(
        f"🔮 {fmt.bold('Preview')} — {fmt.score_sets(sets)}\n{text}", ephemeral=True
    )


async def _submit(inter: discord.Interaction, mtype: MatchType, team1: list[int], team2: list[int], score: str, category: str):
    try:
        sets = parse_score(score)
        projection = await service.preview(mtype, category, sets, team1, team2)
        match_id = await service.submit_match(mtype, category, sets, team1, team2, inter.user.id)
        state = await service.confirmation_state(match_id)
    except RatingError as e:
        return await _fail(inter, e)

    text = await _projection_text(inter, projection)
    await inter.response.send_message(
        f"🎾 {fmt.bold(f'Match #{match_id}')} submitted — {fmt.score_sets(sets)}\n"
        f"{fmt.confirmation_line(state)}\n"
        f"Players: run {fmt.code(f'/confirm match_id:{match_id}')} or {fmt.code(f'/reject match_id:{match_id}')}.\n"
        f"Projected if confirmed:\n{text}",
        allowed_mentions=ALLOWED_MENTIONS,
    )


async def _latest_pending_id(user_id: int) -> int | None:
    pending = await service.pending_for_user(user_id)
    return pending[0].id if pending else None


# --- Events ---
@bot.event
async def on_ready():
    await store.init_db()
    if settings.test_guild_id:
        guild = discord.Object(id=settings.test_guild_id)
        tree.copy_global_to(guild=guild)
        await tree.sync(guild=guild)
    else:
        await tree.sync()
    status = "Padel 🎾 [TEST MODE]" if settings.test_mode else "Padel 🎾"
    await bot.change_presence(activity=discord.Game(name=status))
    log.info("Logged in as %s (db=%s)", bot.user, settings.database_path)


@tree.error
async def on_app_command_error(inter: discord.Interaction, error: app_commands.AppCommandError):
    original = getattr(error, "original", error)
    if isinstance(original, RatingError):
        return await _fail(inter, original)
    log.error("Command %s failed", getattr(inter.command, "name", "?"), exc_info=original)
    msg = "Something went wrong. Please try again."
    if inter.response.is_done():
        await inter.followup.send(msg, ephemeral=True)
    else:
        await inter.response.send_message(msg, ephemeral=True)


# --- Commands ---
@tree.command(name="ping", description="Replies with pong")
async def ping(inter: discord.Interaction):
    await inter.response.send_message("pong")


@tree.command(name="weights", description="Show how much each match category moves ratings")
async def weights(inter: discord.Interaction):
    await inter.response.send_message(
        "**⚖️ Rating weight (K-factor) per category**\n" + fmt.weights_table(MatchService.category_weights()),
        ephemeral=True,
    )


@tree.command(name="preview_singles", description="Preview rating changes for a singles result")
@app_commands.describe(a="Team 1 player", b="Team 2 player", score="Sets from team 1's view, e.g. 6-4, 3-6, 10-8")
@app_commands.choices(category=CATEGORY_CHOICES)
async def preview_singles(inter: discord.Interaction, a: discord.User, b: discord.User, score: str, category: str = "friendly"):
    await _preview(inter, MatchType.SINGLES, [a.id], [b.id], score, category)


@tree.command(name="preview_doubles", description="Preview rating changes for a doubles result")
@app_commands.describe(score="Sets from team 1's view, e.g. 6-4, 7-6")
@app_commands.choices(category=CATEGORY_CHOICES)
async def preview_doubles(
    inter: discord.Interaction,
    a1: discord.User,
    a2: discord.User,
    b1: discord.User,
    b2: discord.User,
    score: str,
    category: str = "friendly",
):
    await _preview(inter, MatchType.DOUBLES, [a1.id, a2.id], [b1.id, b2.id], score, category)


@tree.command(name="match_singles", description="Submit a singles match for confirmation")
@app_commands.describe(a="Team 1 player", b="Team 2 player", score="Sets from team 1's view, e.g. 6-4, 3-6, 10-8")
@app_commands.choices(category=CATEGORY_CHOICES)
async def match_singles(inter: discord.Interaction, a: discord.User, b: discord.User, score: str, category: str = "friendly"):
    await _submit(inter, MatchType.SINGLES, [a.id], [b.id], score, category)


@tree.command(name="match_doubles", description="Submit a doubles match for confirmation")
@app_commands.describe(score="Sets from team 1's view, e.g. 6-4, 7-6")
@app_commands.choices(category=CATEGORY_CHOICES)
async def match_doubles(
    inter: discord.Interaction,
    a1: discord.User,
    a2: discord.User,
    b1: discord.User,
    b2: discord.User,
    score: str,
    category: str = "friendly",
):
    await _submit(inter, MatchType.DOUBLES, [a1.id, a2.id], [b1.id, b2.id], score, category)


async def _respond(inter: discord.Interaction, match_id: int | None, confirm: bool):
    match_id = match_id or await _latest_pending_id(inter.user.id)
    if match_id is None:
        return await inter.response.send_message("You have no matches waiting for you.", ephemeral=True)
    try:
        state = await (service.confirm if confirm else service.reject)(match_id, inter.user.id)
    except RatingError as e:
        return await _fail(inter, e)

    verb = "✅ confirmed" if confirm else "❌ rejected"
    tail = ""
    if state.ready:
        tail = f"\nAll players confirmed — run {fmt.code(f'/finalize match_id:{match_id}')} to apply ratings."
    elif state.status is MatchStatus.DISPUTED:
        tail = "\nThe match is now disputed and will not be rated."
    await inter.response.send_message(
        f"Match #{match_id} {verb} by {fmt.mention(inter.user.id)}.\n{fmt.confirmation_line(state)}{tail}",
        allowed_mentions=ALLOWED_MENTIONS,
    )


@tree.command(name="confirm", description="Confirm a match result you played in")
@app_commands.describe(match_id="Match ID (defaults to your latest pending match)")
async def confirm(inter: discord.Interaction, match_id: int | None = None):
    await _respond(inter, match_id, confirm=True)


@tree.command(name="reject", description="Reject (dispute) a match result you played in")
@app_commands.describe(match_id="Match ID (defaults to your latest pending match)")
async def reject(inter: discord.Interaction, match_id: int | None = None):
    await _respond(inter, match_id, confirm=False)


@tree.command(name="finalize", description="Apply ratings for a fully confirmed match")
async def finalize(inter: discord.Interaction, match_id: int):
    await inter.response.defer()
    try:
        result = await service.finalize(match_id)
    except RatingError as e:
        return await _fail(inter, e)
    head = f"🏁 {fmt.bold(f'Match #{match_id}')} {'already rated' if result.already_finalized else 'rated'}."
    if result.projection is None:
        return await inter.followup.send(f"{head}\nNo rating breakdown was recorded for this match.")
    text = await _projection_text(inter, result.projection)
    await inter.followup.send(f"{head}\n{text}")


@tree.command(name="pending", description="List matches waiting for your confirmation")
async def pending(inter: discord.Interaction):
    matches = await service.pending_for_user(inter.user.id)
    if not matches:
        return await inter.response.send_message("Nothing waiting for you. 🎉", ephemeral=True)
    rows = [[f"#{m.id}", m.match_type.value, m.category.value, m.score] for m in matches]
    table = fmt.mono_table(rows, headers=["ID", "Type", "Category", "Score"])
    await inter.response.send_message(
        f"**📝 Pending confirmations ({len(matches)})**\n{table}\n"
        f"Confirm with {fmt.code('/confirm match_id:<ID>')} or dispute with {fmt.code('/reject match_id:<ID>')}.",
        ephemeral=True,
    )


@tree.command(name="leaderboard", description="Show top players by rating")
@app_commands.describe(limit="How many players to show (1-50)", page="Page number, starting at 1")
async def leaderboard(inter: discord.Interaction, limit: app_commands.Range[int, 1, 50] = 20, page: app_commands.Range[int, 1, 1000] = 1):
    n = int(limit)
    rows = await service.leaderboard(limit=n, offset=(int(page) - 1) * n)
    if not rows:
        return await inter.response.send_message("No players found yet.", ephemeral=True)

    lines = [f"**🏆 Leaderboard (page {page})**"]
    for i, p in enumerate(rows, start=(int(page) - 1) * n + 1):
        lines.append(f"{i}. {fmt.mention(p.user_id)} — {p.rating:.0f} ({p.wins}-{p.losses})")
    await inter.response.send_message("\n".join(lines), allowed_mentions=discord.AllowedMentions.none())


@tree.command(name="stats", description="Show player statistics")
@app_commands.describe(user="The user to show stats for")
async def stats(inter: discord.Interaction, user: discord.User):
    await inter.response.defer(ephemeral=True)
    s = await service.player_stats(user.id)
    if s is None:
        return await inter.followup.send(f"📊 {user.display_name} has no games recorded yet.", ephemeral=True)

    momentum = await service.momentum(user.id)
    history = await service.rating_history(user.id, limit=5)
    kv_lines = [
        f"{fmt.bold('Rating')}: {fmt.code(f'{s.rating:.0f}')}",
        f"{fmt.bold('Record')}: {fmt.code(f'{s.wins}-{s.losses}')} ({fmt.code(f'{s.win_rate_pct}%')})",
        f"{fmt.bold('Win streak')}: {fmt.code(str(s.streak))}",
        f"{fmt.bold('Momentum')}: {fmt.code(fmt.signed(momentum))} over last {service.momentum_window}",
    ]
    recent = "\n".join(f"- #{mid}: {fmt.signed(d)}" for mid, d in history) or "*No rated matches yet.*"
    await inter.followup.send(
        f"## 📊 Stats for {user.display_name}\n\n" + "\n".join(kv_lines) + f"\n\n**Recent rating changes:**\n{recent}",
        ephemeral=True,
    )


# --- Entrypoint ---
def main() -> None:
    if not settings.discord_token:
        log.error("DISCORD_TOKEN not set. Put it in environment or .env")
        raise SystemExit(1)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
