from __future__ import annotations
import sys,os,logging,threading

_pkg_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _pkg_root not in sys.path:
    sys.path.append(_pkg_root)

from typing import NoReturn
from PyQt6.QtWidgets import QApplication
from crossingController.crossing_config import CrossingConfig, build_backend
from crossingController.crossing_controller_ui import CrossingControllerUI
from universal.global_clock import clock

logger = logging.getLogger(__name__)

def main() -> NoReturn:
    config = CrossingConfig()
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="[%(levelname)s] %(name)s: %(message)s"
    )
    app = QApplication(sys.argv)
    backend = build_backend(config, clock)
    clock.set_speed(config.CLOCK_SPEED)
    clock_thread = threading.Thread(target=clock.run, daemon=True, name="GlobalClock")
    clock_thread.start()

    ui = CrossingControllerUI(backend)
    ui.setWindowTitle("Crossing Controller Module")
    ui.show()
    logger.info("Crossing Controller UI launched successfully.")
    code = app.exec()
    clock.stop()
    sys.exit(code)

if __name__ == "__main__":
    main()
