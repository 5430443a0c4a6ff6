import codecs

from setuptools import setup, find_packages

from anteater_mq import __version__


def long_description() -> str:
    with codecs.open('README.md', encoding='utf-8') as fd:
        return fd.read()


setup(
    name='anteater-mq',
    version=__version__,
    description='Declarative send, receive, browse and count actions for IBM MQ queues',
    long_description=long_description(),
    long_description_content_type='text/markdown',
    license='MIT',
    packages=find_packages(exclude=['*tests', '*tests.*']),
    package_data={
        'anteater_mq': ['py.typed'],
    },
    python_requires='>=3.10',
    install_requires=[
        'Jinja2>=3.0.3',
        'lxml>=4.8.0',
    ],
    keywords=[
        'ibm mq',
        'jms',
        'message queue',
    ],
    classifiers=[
        'Development Status :: 4 - Beta',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: Implementation :: CPython',
        'Operating System :: POSIX :: Linux',
    ],
    extras_require={
        'mq': [
            'pymqi>=1.12.0',
        ],
        'dev': [
            'mypy>=0.931',
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
            'pytest-mock>=3.7.0',
            'pytest-timeout>=2.1.0',
            'lxml-stubs>=0.4.0',
            'types-Jinja2>=2.0.0',
        ],
    },
)
