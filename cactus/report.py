"""Per-iteration diagnostics: console lines and a live plot of the candidate."""

from typing import Callable, Optional

import numpy as np

from .core import IterationInfo


class ConsoleReporter:
    """Print one line per iteration.

    ``Cholesky failed`` is printed when the dense KKT fallback was used and
    ``Feasible!`` when the constraints are met for the first time.
    """

    def __init__(self, print_fn: Callable[[str], None] = print):
        self.print_fn = print_fn

    @staticmethod
    def format(info: IterationInfo) -> str:
        return (f"iter={info.iteration}  dst={info.step:1.1e}  primobj={info.primobj:1.4f}  "
                f"nwt_dec={info.newton_decrement:1.2e}  t={info.t:1.1e} a = {info.shift_fraction:1.4f}")

    def __call__(self, info: IterationInfo):
        if info.method == "dense":
            self.print_fn("Cholesky failed")
        if info.became_feasible:
            self.print_fn("Feasible!")
        self.print_fn(self.format(info))


class LivePlotter:
    """Redraw the candidate distribution on a log scale after every iteration."""

    def __init__(self, x: np.ndarray, pause: float = 1e-3, ax=None):
        import matplotlib.pyplot as plt

        self._plt = plt
        self.x = np.asarray(x)
        self.pause = pause
        if ax is None:
            plt.ion()
            _, ax = plt.subplots()
        self.ax = ax
        self.line: Optional[object] = None

    def __call__(self, info: IterationInfo):
        if info.p is None:
            return
        if self.line is None:
            (self.line,) = self.ax.semilogy(self.x, info.p)
            self.ax.grid(True)
            self.ax.set_xlabel("x")
            self.ax.set_ylabel("p")
        else:
            self.line.set_ydata(info.p)
            self.ax.relim()
            self.ax.autoscale_view()
        self.ax.set_title(f"iter={info.iteration}  primobj={info.primobj:.4f}")
        self.ax.figure.canvas.draw_idle()
        self._plt.pause(self.pause)
