import logging


### CLASSES ###
class c:
  """Terminal colors class"""

  _ = "\033[0m"  # reset terminal
  p = "\033[38;5;204m"  # pink
  b = "\033[38;5;295m"  # blue
  g = "\033[38;5;47m"  # green
  grey = "\033[90m"  # grey
  r = "\033[38;5;1m"  # red
  br = "\x1b[31;1m"  # boldred
  y = "\033[38;5;226m"  # yellow


class CustomLogger(logging.Formatter):
  """Formatter for the hbondsnap logger.

  NOTE:
    ``[+] logging.DEBUG``: Setup summaries (neighbor counts, bb/bb bonds found, trie sizes)

    ``[*] logging.INFO``: Parameter tables and structures loaded

    ``[-] logging.WARNING``: Residues or atoms that were skipped

    ``[!] logging.ERROR``: Inconsistent inputs that were worked around

    ``[!] logging.CRITICAL``: Broken parameter tables and unknown residue codes, logged right before raising
  """

  log_format_detailed = f"{c.grey}%(asctime)s{c._} %(message)s {c.p}(%(filename)s:%(lineno)d){c._}"
  log_format_basic = "%(message)s"

  FORMATS = {
    logging.DEBUG: f"{c.g}[+]{c._} {log_format_basic}",
    logging.INFO: f"{c.b}[*]{c._} {log_format_basic}",
    logging.WARNING: f"{c.y}[-]{c._} {log_format_detailed}",
    logging.ERROR: f"{c.r}[!]{c._} {log_format_detailed}",
    logging.CRITICAL: f"{c.br}[!]{c._} {log_format_detailed}",
  }
  """:meta private:"""

  def format(self, record):
    log_fmt = self.FORMATS.get(record.levelno)
    formatter = logging.Formatter(log_fmt)
    return formatter.format(record)


logger = logging.getLogger("hbondsnap")
logger.setLevel(logging.INFO)

# console handler, the level is left to the logger
ch = logging.StreamHandler()
ch.setLevel(logging.DEBUG)
ch.setFormatter(CustomLogger())
logger.addHandler(ch)
