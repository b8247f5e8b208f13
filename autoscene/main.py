"""Main entry point for the OBS automatic scene switcher."""

import logging
import sys
import tkinter as tk

from autoscene.config.settings import ConfigStore
from autoscene.core.events import StatusChannel, StatusChannelHandler
from autoscene.core.logging_config import RedactingFormatter, configure_logging, logging_manager
from autoscene.ui.main_window import MainWindow
from autoscene.utils.file_utils import ensure_dirs

logger = logging.getLogger(__name__)


def setup_logging(config, status: StatusChannel):
    """Configure console/file logging and mirror warnings into the log panel."""
    ensure_dirs(config.log_dir)
    configure_logging(
        log_level="DEBUG" if config.debug else config.log_level,
        log_dir=config.log_dir,
    )
    ui_handler = StatusChannelHandler(status, logging.WARNING)
    ui_handler.setFormatter(RedactingFormatter("%(levelname)s: %(message)s"))
    logging_manager.attach("ui", ui_handler)


def main(config_path: str = "config.json"):
    """Application entry point."""
    try:
        store = ConfigStore(config_path)
        config = store.get()
        status = StatusChannel()
        setup_logging(config, status)

        root = tk.Tk()
        app = MainWindow(root, store, status)

        # Center window on screen
        root.update_idletasks()
        width = root.winfo_width()
        height = root.winfo_height()
        pos_x = (root.winfo_screenwidth() // 2) - (width // 2)
        pos_y = (root.winfo_screenheight() // 2) - (height // 2)
        root.geometry(f"{width}x{height}+{pos_x}+{pos_y}")

        logger.info(f"Configuration file: {store.path}")
        root.after_idle(app.auto_start)

        # Start the application
        root.mainloop()

    except Exception as e:
        logger.critical(f"Failed to start application: {e}", exc_info=True)
        return 1
    finally:
        logging_manager.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
