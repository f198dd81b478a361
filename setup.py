from setuptools import setup, find_namespace_packages

setup(
    name = 'netflowd',
    version = '1.0.0',
    description = 'Daemon that receives and decodes NetFlow v5 datagrams',
    packages = find_namespace_packages( include=[ 'netflowd_app' ] ),
    python_requires = '>=3.6',
    install_requires = [ 'python-daemon' ],
    extras_require = { 'test': [ 'pytest' ] },
    entry_points = {
        'console_scripts': [ 'netflowd = netflowd_app.main:main' ]
    }
)
