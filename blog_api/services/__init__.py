# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   article_service  — listing, detail, create/update and the like toggle
#   comment_service  — threaded comments, cascade delete, per-article listing
#   user_service     — user listing, profile reads and updates
#   auth_service     — signup, login and password changes
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Failures are raised as ``blog_api.errors``
# exceptions and rendered by the central handlers.
