import setuptools

VERSION = '0.1.0'

setup_params = dict(
    name='filecached',
    version=VERSION,
    author='Kenneth VanderLinde',
    author_email='kwvanderlinde@gmail.com',
    url='https://github.com/kwvanderlinde/filecached',
    keywords='requests cache ttl',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    package_data={'': ['LICENSE.txt']},
    package_dir={'filecached': 'filecached'},
    include_package_data=True,
    description='Time-bounded file caching of HTTP responses for the requests library',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=['requests>=2.18.4'],
    extras_require={
        'dev': [
            'mockito>=1.1.1',
            'pytest>=5.1.2',
            'pytest-cov>=2.7.1',
            'ddt>=1.2',
            'urllib3',
        ]
    },
    entry_points={},
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
