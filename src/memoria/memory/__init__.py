"""Entity-centric memory — entity pages, opinions, importance ledger, capture.

Layout:
    <workspace>/
    ├── bank/
    │   ├── entities/
    │   │   └── alice-chen.md          # One page per entity (YAML front matter + Markdown)
    │   ├── opinions.md                # Opinions with confidence and evidence trail
    │   └── importance.json            # Usage signals per memory key
    └── memory/
        └── 2026-10-19.md              # Free-form notes, searchable by BankSearch

Entity names are normalized to slugs (``Alice Chen`` -> ``alice-chen``); the
slug is the file name and the only key.
"""
