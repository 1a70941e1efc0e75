"""
Provides project-level commands. Commands are run via `python setup.py <command> [args]`

Commands available:

- apidoc: regenerate reST docs for inline pydoc comments
- autobuild: watch for changes to the reST files and rebuild the documentation, refreshing
   the browser.
"""

from setuptools import setup, Command

import os


class RunInRootCommand(Command):
    user_options = []

    def initialize_options(self):
        self.cwd = None

    def finalize_options(self):
        self.cwd = os.getcwd()

    def run(self):
        assert os.getcwd() == self.cwd, 'Must be in package root: %s' % self.cwd
        self.runcmd()

    def runcmd(self):
        pass


class ApiDocCommand(RunInRootCommand):
    description = "regenerates the API docs"

    def runcmd(self):
        os.system('"sphinx-apidoc" -f -e -o docs/apidoc src')


class AutoBuildCommand(RunInRootCommand):
    description = "watches the docs for changes and rebuilds them, automatically refreshing the browser page"

    def runcmd(self):
        os.system("sphinx-autobuild docs docs/_build/html -B")


setup(
    name='smoothbluetooth',
    version='0.1.0',
    description='A single managed RFCOMM connection: discovery, listen/connect, byte streaming and recovery.',
    url='',
    author='',
    author_email='',
    license='Apache 2.0',
    package_dir={'': 'src'},
    packages=['smoothbluetooth', 'smoothbluetooth.config', 'smoothbluetooth.radio',
              'smoothbluetooth.support'],
    package_data={'smoothbluetooth.config': ['*.cfg']},
    python_requires='>=3.7',
    install_requires=[
        'configobj>=5.0',
    ],
    extras_require={
        'test': ['pytest', 'PyHamcrest>=2.0.3', 'timeout-decorator'],
    },
    zip_safe=False,
    cmdclass={
        'apidoc': ApiDocCommand,
        'autobuild': AutoBuildCommand
    }
)
