"""
Code Executor

Runs code fragments received from the control process inside the editor process
and reports the outcome in commandResult form. Compilation failures and runtime
exceptions are reported, never raised, so the connection manager can always
reply.
"""

import ast
import io
import json
import time
import logging
import traceback
import warnings
import contextlib
from typing import Dict, Any, Optional

from bridge.protocol import COMPILATION_ERROR_TYPE

logger = logging.getLogger(__name__)

# Logger used by executed fragments; kept outside the bridge namespace so it is forwarded
SCRIPT_LOGGER_NAME = "editor_script"

COMMAND_FILENAME = "<bridge-command>"


class PythonCodeExecutor:
    """
    Executes Python fragments against a persistent namespace.

    If the fragment ends with an expression, its value is the command result
    (like an interactive prompt); otherwise a ``result`` variable assigned by the
    fragment is used. Fragments can call ``log(message)`` to emit a tagged log
    line that the control side attaches to the command's result.
    """

    def __init__(self, namespace: Optional[Dict[str, Any]] = None, diagnostic_tag: str = "[EditorBridge]"):
        self.diagnostic_tag = diagnostic_tag
        self.script_logger = logging.getLogger(SCRIPT_LOGGER_NAME)
        self.namespace: Dict[str, Any] = {
            '__builtins__': __builtins__,
            'time': time,
            'json': json,
            'log': self._log,
        }
        if namespace:
            self.namespace.update(namespace)

    def _log(self, message: Any, level: int = logging.INFO) -> None:
        self.script_logger.log(level, f"{self.diagnostic_tag} {message}")

    def execute(self, code: str) -> Dict[str, Any]:
        """
        Execute ``code`` and capture its outcome.

        Returns:
            Dict with result, logs (captured stdout lines), errors, warnings,
            executionSuccess and, on failure, errorDetails
        """
        start_time = time.time()
        result: Dict[str, Any] = {
            'result': None,
            'logs': [],
            'errors': [],
            'warnings': [],
            'executionSuccess': False,
        }

        try:
            body, tail = self._compile(code)
        except SyntaxError as e:
            message = f"Compilation failed:\n{COMMAND_FILENAME}:{e.lineno}: {e.msg}"
            result['errors'].append(message)
            result['errorDetails'] = {
                'message': message,
                'stackTrace': ''.join(traceback.format_exception_only(type(e), e)),
                'type': COMPILATION_ERROR_TYPE,
            }
            logger.info(f"Command failed to compile: {e.msg} (line {e.lineno})")
            return result

        stdout_capture = io.StringIO()
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                with contextlib.redirect_stdout(stdout_capture):
                    exec(body, self.namespace)
                    value = eval(tail, self.namespace) if tail is not None else self.namespace.get('result')
                result['result'] = self._to_json_value(value)
                result['executionSuccess'] = True
            except Exception as e:
                result['errors'].append(f"{type(e).__name__}: {e}")
                result['errorDetails'] = {
                    'message': str(e) or type(e).__name__,
                    'stackTrace': traceback.format_exc(),
                    'type': type(e).__name__,
                }
                logger.info(f"Command raised {type(e).__name__}: {e}")

        result['logs'] = stdout_capture.getvalue().splitlines()
        result['warnings'] = [str(w.message) for w in caught]
        logger.debug(f"Command finished in {round((time.time() - start_time) * 1000, 2)}ms "
                     f"(success={result['executionSuccess']})")
        return result

    def _compile(self, code: str):
        """Splits a trailing expression off so its value can be returned."""
        tree = ast.parse(code, COMMAND_FILENAME, 'exec')
        tail = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            tail = compile(ast.Expression(tree.body.pop().value), COMMAND_FILENAME, 'eval')
        return compile(tree, COMMAND_FILENAME, 'exec'), tail

    @staticmethod
    def _to_json_value(value: Any) -> Any:
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return repr(value)
