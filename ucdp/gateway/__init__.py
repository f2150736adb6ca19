"""Event ingestion gateway.

Admits a batch of events only when the user has authorized the partner, then
hands the batch to the stream dispatcher and answers with a correlation token.
"""
