"""Instrument a Python project with timing probes around its call graph.

Instrumented programs import `timetrack_cli.stopwatch` at run time, so this
package imports nothing on its own.
"""

__version__ = "0.1.0"
