from setuptools import setup, find_packages


install_requires = [
        "obspy>=1.2.2",
        "pyyaml>=5.4",
        "requests>=2.22",
        "lxml>=4.4",
        ]

extras_require = {
        "dev": ["pytest"],
        }

setup(name="fetchdmc",
      version="0.1.0",
      description="Fetch seismic waveforms, metadata and instrument "
                  "responses from FDSN and IRIS web services",
      url="http://github.com/adjtomo/fetchdmc",
      author="adjTomo Dev Team",
      license="GPL-3.0",
      python_requires=">=3.7",
      packages=find_packages(),
      install_requires=install_requires,
      extras_require=extras_require,
      entry_points={"console_scripts": ["fetchdata=fetchdmc.fetchdata:main"]
                    },
      zip_safe=False
      )
