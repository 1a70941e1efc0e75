import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

from smoothbluetooth.radio.base import ServiceProfile, Security
from smoothbluetooth.workers import DEFAULT_READ_SIZE

# The default extension for configuration files
config_extension = '.cfg'

# The name of the package's configuration files, bluetooth.default.cfg etc.
config_name = 'bluetooth'

# the directory holding the shipped configuration files
config_directory = os.path.dirname(os.path.abspath(__file__))


def config_flavor(name, flavor=None):
    """
    >>> config_flavor('bluetooth', 'default')
    'bluetooth.default'
    >>> config_flavor('bluetooth')
    'bluetooth'
    """
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file in the given directory.
    """
    config_file = os.path.join(directory or config_directory, name + config_extension)
    return config_file


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name. A missing file gives an empty configuration.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    config = load_config_file_base(file, False)
    return config


def load_schema(name, directory) -> ConfigObj:
    """
    Loads the "schema" specialization as a configspec. Check functions such as option('a', 'b')
    contain commas, so the file is not parsed for list values.
    """
    file = config_filename(config_flavor(name, 'schema'), directory)
    try:
        return ConfigObj(file, list_values=False, _inspec=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def load_config(name, directory, user_directory='~'):
    """
        Loads all the configuration files that relate to the given name.
        Configurations are merged in this order, later ones overriding earlier ones:
        - the default specialization
        - the platform specialization
        - the user override, from the user's home directory
        - the local configuration
        The merged configuration is validated against the "schema" specialization, which also
        supplies the defaults and converts values to their declared types.
    :param directory: the location of the configuration files
    :param user_directory: the location of the user override. None to skip it.
    :return: the validated ConfigObj
    """
    local_config = config_flavor_file(name, directory)
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    config = ConfigObj()
    config.merge(default_config)
    config.merge(platform_config)
    if user_directory:
        user_config = load_config_file_base(os.path.join(os.path.expanduser(user_directory),
                                                         name + config_extension), must_exist=False)
        config.merge(user_config)
    config.merge(local_config)

    config.configspec = load_schema(name, directory)
    validator = Validator()
    result = config.validate(validator, preserve_errors=True)
    if result is not True:
        failed = ['.'.join(sections + [key or '']) for sections, key, _ in flatten_errors(config, result)]
        raise ConfigObjError("the config file %s failed validation %s" % (name, ', '.join(failed)))
    return config


def load_default_config(user_directory='~') -> ConfigObj:
    """ loads the package configuration, with any user override. """
    return load_config(config_name, config_directory, user_directory)


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to descend through
    :return: The configuration object identified by the path, or None.
    """
    for p in path:    # lookup specific section
        conf = conf.get(p, None)
        if conf is None:
            return
    return conf


def connection_settings(conf: Section):
    """
    Reads the [connection] section.
    :return: a tuple of (ServiceProfile, Security, read_size)
    """
    section = fetch_conf_path(conf, ['connection']) or {}
    profile = ServiceProfile[section.get('profile', 'other_device').upper()]
    security = Security(section.get('security', Security.SECURE.value))
    read_size = int(section.get('read_size', DEFAULT_READ_SIZE))
    return profile, security, read_size


def rfcomm_settings(conf: Section) -> dict:
    """
    Reads the [rfcomm] section, resolving the channel of each service profile.
    :return: a dict with keys service_name, channels (ServiceProfile to int), bluetoothctl and scan_timeout.
    """
    section = fetch_conf_path(conf, ['rfcomm']) or {}
    channels = fetch_conf_path(section, ['channels']) or {}
    return {
        'service_name': section.get('service_name', 'Bluetooth Secure'),
        'channels': {profile: int(channels.get(profile.name.lower(), 1)) for profile in ServiceProfile},
        'bluetoothctl': section.get('bluetoothctl', 'bluetoothctl'),
        'scan_timeout': int(section.get('scan_timeout', 12)),
    }
