#!/usr/bin/env python3
"""
Configuration system for kvrepl
Supports YAML files, CLI overrides, and programmatic access
"""

import yaml
import argparse
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from copy import deepcopy
import logging

from kvrepl_commands.backend import BACKENDS


@dataclass
class StorageConfig:
	"""Backend settings applied to every store the shell opens"""
	create_if_missing: bool = True
	sync_writes: bool = True  # durable writes, the backend commits to disk before OK
	default_path: Optional[str] = None  # store to open at startup, if any
	engine: str = "sqlite"  # one of kvrepl_commands.backend.BACKENDS

	def to_dict(self) -> Dict[str, Any]:
		"""Convert to dictionary for YAML serialization"""
		return {
			'create_if_missing': self.create_if_missing,
			'sync_writes': self.sync_writes,
			'default_path': self.default_path,
			'engine': self.engine,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> 'StorageConfig':
		"""Create from dictionary (YAML loading)"""
		return cls(
			create_if_missing=data.get('create_if_missing', True),
			sync_writes=data.get('sync_writes', True),
			default_path=data.get('default_path'),
			engine=data.get('engine', 'sqlite'),
		)


@dataclass
class ConsoleConfig:
	"""Console messages logging level and prompt configuration"""
	verbose: bool = False
	quiet: bool = False
	prompt: str = ">>> "
	show_banner: bool = True

	def to_dict(self) -> Dict[str, Any]:
		return {
			'verbose': self.verbose,
			'quiet': self.quiet,
			'prompt': self.prompt,
			'show_banner': self.show_banner,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> 'ConsoleConfig':
		return cls(
			verbose=data.get('verbose', False),
			quiet=data.get('quiet', False),
			prompt=data.get('prompt', ">>> "),
			show_banner=data.get('show_banner', True),
		)


@dataclass
class KvReplConfig:
	"""Complete configuration for the kvrepl shell"""
	storage: StorageConfig = field(default_factory=StorageConfig)
	console: ConsoleConfig = field(default_factory=ConsoleConfig)

	# Metadata
	config_version: str = "1.0"
	description: str = "kvrepl Configuration"

	def to_dict(self) -> Dict[str, Any]:
		"""Convert to dictionary for YAML serialization"""
		return {
			'config_version': self.config_version,
			'description': self.description,
			'storage': self.storage.to_dict(),
			'console': self.console.to_dict(),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> 'KvReplConfig':
		"""Create from dictionary (YAML loading), missing sections keep defaults"""
		config = cls()

		if 'config_version' in data:
			config.config_version = str(data['config_version'])
		if 'description' in data:
			config.description = data['description']

		if isinstance(data.get('storage'), dict):
			config.storage = StorageConfig.from_dict(data['storage'])

		if isinstance(data.get('console'), dict):
			config.console = ConsoleConfig.from_dict(data['console'])

		return config


class ConfigurationManager:
	"""
	Manages configuration loading, merging, and validation
	"""

	def __init__(self, config_file: str = "kvrepl.yaml"):
		self.config_file = config_file
		self.config: Optional[KvReplConfig] = None
		self.config_file_path: Optional[Path] = None

		self.logger = logging.getLogger(__name__)

		# Standard config file locations (in order of preference)
		self.config_search_paths = [
			Path.cwd() / "kvrepl.yaml",  # Current directory
			Path.cwd() / "config" / "kvrepl.yaml",  # Config subdirectory
			Path.home() / ".config" / "kvrepl" / "config.yaml",  # User config
			Path("/etc/kvrepl/config.yaml"),  # System config (Linux)
		]

	def load_config(self, config_file: Optional[str] = None) -> KvReplConfig:
		"""
		Load configuration from file with fallback chain

		Args:
			config_file: Specific config file path, or None for auto-discovery

		Returns:
			Loaded configuration object (defaults if nothing usable was found)
		"""
		self.config = None

		if config_file:
			# Use specified file
			config_path = Path(config_file)
			if config_path.exists():
				self.config = self._load_yaml_file(config_path)
				self.config_file_path = config_path
				self.logger.info(f"Loaded config from: {config_path}")
			else:
				self.logger.warning(f"Config file not found: {config_path}")
				self.logger.info("Using default configuration")
		else:
			# Auto-discover config file
			for path in self.config_search_paths:
				if path.exists():
					self.config = self._load_yaml_file(path)
					self.config_file_path = path
					self.logger.info(f"Auto-discovered config: {path}")
					break
			else:
				self.logger.info("No config file found, using defaults")

		if self.config is None:
			self.config = KvReplConfig()

		return self.config

	def _load_yaml_file(self, file_path: Path) -> KvReplConfig:
		"""Load configuration from YAML file"""
		try:
			with open(file_path, 'r') as f:
				yaml_data = yaml.safe_load(f) or {}

			if not isinstance(yaml_data, dict):
				self.logger.error(f"Config file {file_path} is not a mapping, using defaults")
				return KvReplConfig()

			return KvReplConfig.from_dict(yaml_data)

		except (OSError, yaml.YAMLError) as e:
			self.logger.error(f"Error loading config file {file_path}: {e}")
			return KvReplConfig()

	def merge_cli_args(self, args: argparse.Namespace) -> KvReplConfig:
		"""
		Merge CLI arguments into configuration (CLI takes precedence)

		Args:
			args: Parsed command line arguments

		Returns:
			Updated configuration
		"""
		if self.config is None:
			self.config = KvReplConfig()

		# Storage settings
		if getattr(args, 'open', None):
			self.config.storage.default_path = args.open
		if getattr(args, 'no_sync', False):
			self.config.storage.sync_writes = False
		if getattr(args, 'engine', None):
			self.config.storage.engine = args.engine

		# Console settings
		if getattr(args, 'verbose', False):
			self.config.console.verbose = True
		if getattr(args, 'quiet', False):
			self.config.console.quiet = True

		return self.config

	def save_config(self, file_path: Optional[str] = None) -> bool:
		"""
		Save current configuration to YAML file

		Args:
			file_path: Target file path, or None to use loaded file path

		Returns:
			True if saved successfully
		"""
		if file_path:
			target_path = Path(file_path)
		elif self.config_file_path:
			target_path = self.config_file_path
		else:
			target_path = Path(self.config_file)

		if self.config is None:
			self.config = KvReplConfig()

		try:
			target_path.parent.mkdir(parents=True, exist_ok=True)

			with open(target_path, 'w') as f:
				f.write("# kvrepl Configuration\n")
				f.write("# Generated configuration file\n")
				f.write(f"# Version: {self.config.config_version}\n\n")

				yaml.dump(self.config.to_dict(), f,
						  default_flow_style=False,
						  sort_keys=False,
						  indent=2)

			self.logger.info(f"Configuration saved to: {target_path}")
			return True

		except OSError as e:
			self.logger.error(f"Error saving config to {target_path}: {e}")
			return False

	def create_sample_config(self, file_path: str = "kvrepl_sample.yaml") -> bool:
		"""Create a sample configuration file with comments"""
		try:
			with open(file_path, 'w') as f:
				f.write(self._generate_sample_yaml())
			return True

		except OSError as e:
			self.logger.error(f"Error creating sample config: {e}")
			return False

	def _generate_sample_yaml(self) -> str:
		"""Generate sample YAML with comments"""
		return """# kvrepl Configuration File

# =============================================================================
# STORAGE SETTINGS
# =============================================================================
storage:
  create_if_missing: true         # 'open' creates the store if it does not exist
  sync_writes: true               # 'write' waits until the value is on disk
  default_path: null              # Store to open at startup, e.g. "./data.sqlite3"
  engine: sqlite                  # Storage engine: sqlite, or leveldb (needs plyvel)

# =============================================================================
# CONSOLE
# =============================================================================
console:
  verbose: false                  # Verbose output (tokenizer and dispatch traces)
  quiet: false                    # Quiet mode (no banner, warnings only)
  prompt: ">>> "                  # Input prompt
  show_banner: true               # Print the banner at startup

# =============================================================================
# CONFIGURATION METADATA
# =============================================================================
config_version: "1.0"
description: "kvrepl Configuration"
"""

	def validate_config(self) -> tuple[bool, list[str]]:
		"""
		Validate configuration for common issues

		Returns:
			(is_valid, list_of_errors)
		"""
		errors = []
		config = self.config if self.config is not None else KvReplConfig()

		if not isinstance(config.console.prompt, str) or not config.console.prompt:
			errors.append("Console prompt must be a non-empty string")

		if config.console.verbose and config.console.quiet:
			errors.append("Console cannot be both verbose and quiet")

		default_path = config.storage.default_path
		if default_path is not None and (not isinstance(default_path, str) or not default_path.strip()):
			errors.append(f"Invalid storage default_path: {default_path!r}")

		if not isinstance(config.storage.engine, str) or config.storage.engine not in BACKENDS:
			errors.append(f"Unknown storage engine: {config.storage.engine!r} (choose from: {', '.join(BACKENDS)})")

		for name in ('create_if_missing', 'sync_writes'):
			if not isinstance(getattr(config.storage, name), bool):
				errors.append(f"Storage {name} must be true or false")

		return len(errors) == 0, errors

	def get_config(self) -> KvReplConfig:
		"""Get a copy of the current configuration"""
		return deepcopy(self.config)


def create_argument_parser() -> argparse.ArgumentParser:
	"""Argument parser for the kvrepl process (the shell grammar itself takes no flags)"""
	parser = argparse.ArgumentParser(
		prog='kvrepl',
		description='Interactive shell for a key-value store',
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog="""
Examples:
  %(prog)s                                 # Start the shell with default settings
  %(prog)s -o ./data.sqlite3               # Open a store before the first prompt
  %(prog)s -c my_config.yaml               # Use specific config file
  %(prog)s --create-config sample.yaml     # Create sample config file

Configuration:
  Configuration is loaded in this order (later overrides earlier):
  1. Built-in defaults
  2. Configuration file (YAML)
  3. Command line arguments

  Config file search order:
  - kvrepl.yaml (current directory)
  - config/kvrepl.yaml
  - ~/.config/kvrepl/config.yaml
  - /etc/kvrepl/config.yaml
		"""
	)

	# Configuration file handling
	config_group = parser.add_argument_group('Configuration')
	config_group.add_argument(
		'-c', '--config',
		type=str,
		help='Configuration file path (YAML format)'
	)
	config_group.add_argument(
		'--create-config',
		type=str,
		metavar='FILE',
		help='Create sample configuration file and exit'
	)
	config_group.add_argument(
		'--save-config',
		type=str,
		metavar='FILE',
		help='Save current configuration to file'
	)

	# Storage settings
	storage_group = parser.add_argument_group('Storage Settings')
	storage_group.add_argument(
		'-o', '--open',
		type=str,
		metavar='PATH',
		help='Open this store before the first prompt'
	)
	storage_group.add_argument(
		'--no-sync',
		action='store_true',
		help='Do not wait for writes to reach the disk'
	)
	storage_group.add_argument(
		'--engine',
		choices=sorted(BACKENDS),
		help='Storage engine for every store the shell opens'
	)

	# Console settings
	console_group = parser.add_argument_group('Console')
	console_group.add_argument(
		'-v', '--verbose',
		action='store_true',
		help='Verbose output'
	)
	console_group.add_argument(
		'-q', '--quiet',
		action='store_true',
		help='Quiet mode (no banner, warnings only)'
	)

	return parser


def setup_configuration(argv=None) -> tuple[Optional[KvReplConfig], bool, Optional[ConfigurationManager]]:
	"""
	Setup configuration system with CLI integration

	Args:
		argv: Command line arguments (None for sys.argv)

	Returns:
		(config_object, should_exit, config_manager)
	"""
	parser = create_argument_parser()
	args = parser.parse_args(argv)

	# Handle special commands first
	if args.create_config:
		manager = ConfigurationManager()
		if manager.create_sample_config(args.create_config):
			print(f"Sample configuration created: {args.create_config}")
			print(f"Edit the file and run again with: -c {args.create_config}")
		return None, True, None

	manager = ConfigurationManager()
	manager.load_config(args.config)

	# Merge CLI arguments (CLI overrides config file)
	config = manager.merge_cli_args(args)

	is_valid, errors = manager.validate_config()
	if not is_valid:
		print("Configuration errors:")
		for error in errors:
			print(f"  ✗ {error}")
		return config, True, None

	if args.save_config:
		if manager.save_config(args.save_config):
			print(f"Configuration saved to: {args.save_config}")

	return config, False, manager
