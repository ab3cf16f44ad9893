"""
The mongod configuration file.

Edits only substitute lines that already exist (commented or not); a key with
no line to replace is an error, new keys are never inserted.
"""

from __future__ import annotations

import logging
import os
import re

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from replica_bootstrap.errors import ConfigurationError

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def template_env():
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render_to_file(template_name, path, **params):
    logger = logging.getLogger(__name__)
    content = template_env().get_template(template_name).render(**params)
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)
    logger.debug(f"Rendered {template_name} to {path}")


class MongoConfigFile:

    def __init__(self, path):
        self.path = path

    def exists(self):
        return os.path.isfile(self.path)

    def read(self):
        with open(self.path) as f:
            return f.read()

    def render_default(self, settings):
        render_to_file(
            'mongodb.conf.j2',
            self.path,
            port=settings.port,
            log_file=settings.log_file,
            db_path=os.path.join(settings.data_dir, 'db'),
            tmp_dir=settings.tmp_dir,
            pid_file=settings.pid_file,
            enable_ipv6=settings.enable_ipv6,
            enable_directory_per_db=settings.enable_directory_per_db,
            disable_system_log=settings.disable_system_log,
        )

    def contains(self, pattern):
        """:param pattern: regexp searched line by line (``^`` anchors a line)."""
        return re.search(pattern, self.read(), re.MULTILINE) is not None

    def has_repl_set_name(self, name):
        return self.contains(r'^\s*replSetName: {}\s*$'.format(re.escape(name)))

    def authorization_disabled(self):
        return self.contains(r'^\s*authorization: disabled')

    def substitute(self, key, value):
        """
        Replace the first ``key:`` line (optionally commented out) with
        ``key: value``, keeping its indentation.
        """
        content = self.read()
        pattern = re.compile(r'#?{}:.*'.format(re.escape(key)))
        rendered = f"{key}: {value}".rstrip()
        new_content, count = pattern.subn(lambda _: rendered, content, count=1)
        if not count:
            raise ConfigurationError(f"No '{key}' setting found in {self.path} to substitute")
        with open(self.path, 'w') as f:
            f.write(new_content)

    def configure(self, properties):
        """
        Substitute every key of ``properties`` in order.

        :param properties: dict of key -> value (bools rendered as true/false).
        """
        logger = logging.getLogger(__name__)
        for key, value in properties.items():
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            self.substitute(key, value)
            logger.debug(f"Set '{key}' in {self.path}")
