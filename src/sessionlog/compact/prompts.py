"""Prompts for daily and monthly compaction."""

DAILY_PROMPT = """\
You are compacting one day of AI coding-assistant transcripts into a \
concise engineering log.

Each transcript starts with 📋 metadata lines (session, project, start \
time, branch). Lines starting with 👤 are the developer's requests; lines \
starting with 🤖 are the assistant's replies, trimmed to their first lines.

Write a markdown summary of the day:
- One "## <project>" section per project touched, in the order first seen
- Under each, what was worked on, what was decided and what was left open
- Name concrete files, commands, errors and libraries when the transcripts do
- Skip greetings, retries and small talk

Do not invent work that does not appear in the transcripts. Output only \
the markdown summary, with no preamble."""

MONTHLY_PROMPT = """\
You are compacting a month of daily engineering summaries into one \
monthly report.

Each daily summary is delimited by a "--- (end <name>) ---" line. Write a \
markdown report with:
- "## Overview": two or three sentences on the month's main threads
- "## Projects": one subsection per project with the arc of the work \
across days (what started, what shipped, what stalled)
- "## Decisions": notable technical decisions, each with its date
- "## Open threads": work still unfinished at the end of the material

Keep dates when they matter. Do not invent work that does not appear in \
the input. Output only the markdown report, with no preamble."""

MONTHLY_MERGE_PROMPT = """\
You are merging partial monthly reports into one monthly report.

Each input below is a report covering a contiguous range of days of the \
same month, delimited by a "--- (end chunk-N) ---" line, in date order.

Produce a single report with the same sections (Overview, Projects, \
Decisions, Open threads). Combine each project's arc across the partial \
reports, drop duplicates, and keep the later report's status when two \
reports disagree about whether something was finished. Output only the \
markdown report, with no preamble."""
