# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access:
#
#   article_service  — article listing (cached), detail and creation
#   comment_service  — comment submission and cached per-article listing
#   comment_store    — durable-store operations for comments, including
#                      the compare-and-set status transition
#
# All service functions accept an AsyncSession as their first argument.
# Request handlers get it from the ``get_db`` dependency; moderation
# workers open one session per unit of work.
