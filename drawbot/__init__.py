"""Prize draws for Telegram groups: roster draws and post-based giveaways."""

__version__ = "1.0.0"
