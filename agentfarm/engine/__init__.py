"""Step execution engine.

The dispatcher (:mod:`agentfarm.engine.dispatcher`) validates a step, routes
it to the git or platform executors and runs it through the timeout/retry
wrapper. The execution environment imports the context from here, so this
package only re-exports :class:`ExecutionContext`.
"""

from agentfarm.engine.context import ExecutionContext

__all__ = ["ExecutionContext"]
