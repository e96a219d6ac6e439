#!/usr/bin/env python

from setuptools import setup

setup(name='cc-report-cache',
      version='0.1.0',
      description='Cache-on-demand reporting over the Zoom Contact Center API',
      author='Fishtown Analytics',
      url='http://fishtownanalytics.com',
      classifiers=['Programming Language :: Python :: 3 :: Only'],
      install_requires=[
          'singer-python==6.0.0',
          'backoff==2.2.1',
          'requests>=2.25.1',
          'python-dateutil>=2.6.0',
          'SQLAlchemy>=2.0',
          'openai>=1.0',
      ],
      extras_require={
          'test': [
              'pytest',
          ],
      },
      entry_points='''
          [console_scripts]
          cc-report-cache=cc_reports:main
      ''',
      packages=['cc_reports'],
)
