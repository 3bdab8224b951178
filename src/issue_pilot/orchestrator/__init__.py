"""Per-event orchestration of an external reasoning engine on issue threads.

One CI job handles one event: authorize the actor, classify the comment,
resume the issue's conversation, run the engine under supervision, account
usage against budgets, commit state back to the repository, and reply.

There is no daemon and no lock service. The git remote's fast-forward check
is the only concurrency control between sibling runs; the usage log relies on
git's union merge driver instead of a lock.
"""
