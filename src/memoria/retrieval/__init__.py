"""Retrieval enhancements layered over a base ``search(query, limit)`` callable.

Modules:
    types.py      SearchResult and the sync-or-async base search convention
    bank.py       BankSearch, a lexical base search over workspace Markdown
    context.py    conversation-aware query augmentation
    expansion.py  lexicon and pseudo-relevance-feedback query expansion
    multihop.py   iterative retrieval driven by previous hits
    rerank.py     heuristic re-scoring, pluggable external scorer
    pipeline.py   enhanced_search(), which chains the stages
"""
