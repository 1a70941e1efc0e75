import os
import tempfile
import unittest

from configobj import ConfigObjError, ConfigObj
from hamcrest import assert_that, is_, equal_to, calling, raises

from smoothbluetooth.config.config import config_filename, config_flavor, load_config_file_base, \
    load_config, map_os_name, fetch_conf_path, load_default_config, connection_settings, rfcomm_settings, \
    config_directory
from smoothbluetooth.radio.base import ServiceProfile, Security

here = os.path.dirname(__file__)


class ConfigTestCase(unittest.TestCase):

    def test_config_file_not_found(self):
        assert_that(calling(load_config_file_base).with_args('blah'), raises(IOError))

    def test_config_file_invalid_value(self):
        assert_that(calling(load_config).with_args('config_test_invalid', here, None),
                    raises(ConfigObjError, "the config file config_test_invalid failed validation connection.read_size"))

    def test_config_file_invalid_syntax(self):
        assert_that(calling(load_config_file_base).with_args(os.path.join(here, 'config_test_invalid_syntax.cfg')),
                    raises(ConfigObjError, "Section too nested at line 1. at .*config_test_invalid_syntax.cfg"))

    def test_can_retrieve_config_file(self):
        name = config_flavor('bluetooth', "default")
        file = config_filename(name, here)
        assert_that(os.path.exists(file), is_(True), "expected config path %s to exist" % file)

    def test_default_directory(self):
        assert_that(config_filename('bluetooth'), is_(os.path.join(config_directory, 'bluetooth.cfg')))

    def test_map_os_name(self):
        assert_that(map_os_name('Windows'), is_('windows'))
        assert_that(map_os_name('Darwin'), is_('osx'))
        assert_that(map_os_name('darwin'), is_('osx'))

    def test_non_existent_config_path(self):
        sut = ConfigObj()
        assert_that(fetch_conf_path(sut, ['abcd']), is_(None))

    def test_default_config_values(self):
        conf = load_default_config(None)
        assert_that(conf['connection']['profile'], is_('other_device'))
        assert_that(conf['connection']['read_size'], is_(1024))
        assert_that(conf['rfcomm']['channels']['other_device'], is_(1))

    def test_user_override(self):
        with tempfile.TemporaryDirectory() as home:
            with open(os.path.join(home, 'bluetooth.cfg'), 'w') as f:
                f.write("[connection]\nprofile = android_device\nsecurity = insecure\n")
            conf = load_default_config(home)
        assert_that(connection_settings(conf), is_((ServiceProfile.ANDROID_DEVICE, Security.INSECURE, 1024)))

    def test_user_override_is_validated(self):
        with tempfile.TemporaryDirectory() as home:
            with open(os.path.join(home, 'bluetooth.cfg'), 'w') as f:
                f.write("[connection]\nsecurity = sometimes\n")
            assert_that(calling(load_default_config).with_args(home),
                        raises(ConfigObjError, "failed validation connection.security"))


class SettingsTest(unittest.TestCase):

    def test_connection_settings_defaults(self):
        assert_that(connection_settings(load_default_config(None)),
                    is_((ServiceProfile.OTHER_DEVICE, Security.SECURE, 1024)))

    def test_connection_settings_empty_config(self):
        assert_that(connection_settings(ConfigObj()), is_((ServiceProfile.OTHER_DEVICE, Security.SECURE, 1024)))

    def test_rfcomm_settings(self):
        settings = rfcomm_settings(load_default_config(None))
        assert_that(settings, is_(equal_to({
            'service_name': 'Bluetooth Secure',
            'channels': {ServiceProfile.ANDROID_DEVICE: 1, ServiceProfile.OTHER_DEVICE: 1},
            'bluetoothctl': 'bluetoothctl',
            'scan_timeout': 12,
        })))

    def test_rfcomm_channels_from_config(self):
        conf = ConfigObj({'rfcomm': {'channels': {'android_device': '3'}}})
        settings = rfcomm_settings(conf)
        assert_that(settings['channels'][ServiceProfile.ANDROID_DEVICE], is_(3))
        assert_that(settings['channels'][ServiceProfile.OTHER_DEVICE], is_(1))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
