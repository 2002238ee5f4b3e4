import time
from typing import Iterable, Optional

import discord

from padel_rank.models import ConfirmationState, RatingProjection, SetScore
from padel_rank.rules import to_score_string


def bold(t: str) -> str:
	return f"**{t}**"


def code(t: str) -> str:
	return f"`{t}`"


def block(t: str, lang: str | None = None) -> str:
	return f"```{lang or ''}\n{t}\n```"


def mention(uid: int) -> str:
	return f"<@{uid}>"


def signed(n: float) -> str:
	return f"{n:+.0f}"


def score_sets(sets: list[SetScore]) -> str:
	return to_score_string(sets) or "—"


def weights_table(weights: dict[str, int]) -> str:
	rows = [[name.replace("_", " "), str(k)] for name, k in sorted(weights.items(), key=lambda kv: kv[1])]
	return mono_table(rows, headers=["Category", "K"])


def projection_lines(p: RatingProjection, names: Optional[dict[int, str]] = None) -> str:
	"""Render a projection as a header line plus one row per player."""
	names = names or {}
	header = (
		f"K={p.k} · margin ×{p.margin:.2f} · "
		f"team 1 {p.team1_avg:.0f} ({p.exp1:.0%}) vs team 2 {p.team2_avg:.0f} ({p.exp2:.0%})"
	)
	rows = [
		[f"T{i.team}", names.get(i.user_id, f"User{i.user_id}"), f"{i.old:.0f}", signed(i.delta), f"{i.new:.0f}"]
		for i in p.items
	]
	return header + "\n" + mono_table(rows, headers=["Team", "Player", "Old", "Δ", "New"])


def confirmation_line(state: ConfirmationState) -> str:
	parts = [f"status {code(state.status.value)}"]
	if state.confirmed:
		parts.append("confirmed: " + ", ".join(mention(u) for u in state.confirmed))
	if state.pending:
		parts.append("waiting on: " + ", ".join(mention(u) for u in state.pending))
	if state.rejected:
		parts.append("rejected: " + ", ".join(mention(u) for u in state.rejected))
	return " · ".join(parts)


# --- Display name cache helper ---
_NAME_CACHE: dict[tuple[Optional[int], int], tuple[float, str]] = {}
_CACHE_TTL_SEC = 300.0  # 5 minutes
_MAX_CACHE_SIZE = 1000


def _clean_expired_cache():
	"""Remove expired entries, then the oldest ones if the cache is still too large."""
	now = time.time()
	expired_keys = [k for k, v in _NAME_CACHE.items() if now - v[0] >= _CACHE_TTL_SEC]
	for k in expired_keys:
		del _NAME_CACHE[k]

	if len(_NAME_CACHE) > _MAX_CACHE_SIZE:
		sorted_entries = sorted(_NAME_CACHE.items(), key=lambda x: x[1][0])
		for k, _ in sorted_entries[: len(_NAME_CACHE) - _MAX_CACHE_SIZE]:
			del _NAME_CACHE[k]


async def display_name_or_cached(
	bot,
	guild: Optional[discord.Guild],
	user_id: int,
	fallback: Optional[str] = None,
) -> str:
	"""Return a user's display name, preferring guild nicknames, with a small TTL cache.

	Tries the guild member cache, then the global user cache, then fetch_user.
	Returns fallback (default "User<id>") if everything fails.
	"""
	g_id = getattr(guild, "id", None)
	key = (g_id, user_id)
	now = time.time()

	if len(_NAME_CACHE) % 100 == 0:
		_clean_expired_cache()

	cached = _NAME_CACHE.get(key)
	if cached and (now - cached[0] < _CACHE_TTL_SEC):
		return cached[1]

	name: Optional[str] = None
	member = guild.get_member(user_id) if guild is not None else None
	if member is not None:
		name = member.display_name
	if name is None:
		user = bot.get_user(user_id)
		if user is None:
			try:
				user = await bot.fetch_user(user_id)
			except discord.HTTPException:
				user = None
		if user is not None:
			name = user.display_name

	name = name or fallback or f"User{user_id}"
	_NAME_CACHE[key] = (now, name)
	return name


def mono_table(rows: list[list[str]], headers: Optional[list[str]] = None) -> str:
	"""Render a simple monospaced table as a Markdown code block.

	- Pads columns to the widest cell
	- Includes a header divider if headers are provided
	"""
	norm_rows = [[str(c) for c in r] for r in rows]
	col_count = max((len(r) for r in norm_rows), default=0)
	if headers:
		headers = [str(h) for h in headers]
		col_count = max(col_count, len(headers))

	def pad_row(r: Iterable[str]) -> list[str]:
		lst = list(r)
		return lst + [""] * (col_count - len(lst))

	if headers:
		headers = pad_row(headers)
	norm_rows = [pad_row(r) for r in norm_rows]

	widths = [0] * col_count
	for r in ([headers] if headers else []) + norm_rows:
		for i, cell in enumerate(r):
			widths[i] = max(widths[i], len(cell))

	def fmt_row(r: list[str]) -> str:
		return " | ".join(r[i].ljust(widths[i]) for i in range(col_count)).rstrip()

	lines: list[str] = []
	if headers:
		lines.append(fmt_row(headers))
		lines.append("-+-".join("-" * w for w in widths))
	for r in norm_rows:
		lines.append(fmt_row(r))

	return block("\n".join(lines), "md")
