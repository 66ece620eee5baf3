"""
setup.py: Install stmd.
"""
import os
import subprocess

from setuptools import setup, find_packages

##########################
VERSION = "0.1.0"
ISRELEASED = False
__version__ = VERSION
##########################

################################################################################
# Writing version control information to the module
################################################################################

def git_version():
    # Return the git revision as a string
    # copied from numpy setup.py
    def _minimal_ext_cmd(cmd):
        # construct minimal environment
        env = {}
        for k in ['SYSTEMROOT', 'PATH']:
            v = os.environ.get(k)
            if v is not None:
                env[k] = v
        # LANGUAGE is used on win32
        env['LANGUAGE'] = 'C'
        env['LANG'] = 'C'
        env['LC_ALL'] = 'C'
        out = subprocess.Popen(
            cmd, stdout=subprocess.PIPE, env=env).communicate()[0]
        return out

    try:
        out = _minimal_ext_cmd(['git', 'rev-parse', 'HEAD'])
        GIT_REVISION = out.strip().decode('ascii')
    except OSError:
        GIT_REVISION = "Unknown"

    return GIT_REVISION


def write_version_py(filename='stmd/version.py'):
    cnt = """
# THIS FILE IS GENERATED FROM stmd setup.
short_version = '%(version)s'
version = '%(version)s'
full_version = '%(full_version)s'
git_revision = '%(git_revision)s'
release = %(isrelease)s

if not release:
    version = full_version
"""
    FULLVERSION = VERSION
    if os.path.exists('.git'):
        GIT_REVISION = git_version()
    else:
        GIT_REVISION = "Unknown"

    if not ISRELEASED:
        FULLVERSION += '.dev-' + GIT_REVISION[:7]

    with open(filename, 'w') as a:
        a.write(cnt % {'version': VERSION,
                       'full_version': FULLVERSION,
                       'git_revision': GIT_REVISION,
                       'isrelease': str(ISRELEASED)})


write_version_py()

def buildKeywordDictionary():
    setupKeywords = {}
    setupKeywords["name"]              = "stmd"
    setupKeywords["version"]           = VERSION
    setupKeywords["license"]           = "LGPL 3.0"
    setupKeywords["packages"]          = find_packages()
    setupKeywords["platforms"]         = ["Linux", "Mac OS X", "Windows"]
    setupKeywords["description"]       = "Statistical temperature molecular dynamics estimator with replica exchange."
    setupKeywords["python_requires"]   = ">=3.6"
    setupKeywords["install_requires"]  = ["numpy", "netCDF4", "docopt", "pyyaml", "cerberus>=1.3"]
    setupKeywords["extras_require"]    = {"mpi": ["mpi4py"], "test": ["pytest"]}
    setupKeywords["entry_points"]      = {"console_scripts": ["stmd = stmd.cli:main"]}
    setupKeywords["long_description"]  = """
    STMD adaptively learns the statistical temperature T(E) of a molecular system with a
    Wang-Landau recursion in temperature space. Scaling the forces of the simulation by
    T0/T(E) flattens the sampled energy histogram. Several walkers can exchange their
    temperature slots with a Metropolis criterion (RESTMD).
    """
    outputString=""
    firstTab     = 40
    secondTab    = 60
    for key in sorted(setupKeywords.keys()):
         value         = setupKeywords[key]
         outputString += key.rjust(firstTab) + str( value ).rjust(secondTab) + "\n"

    print("%s" % outputString)

    return setupKeywords


def main():
    setupKeywords = buildKeywordDictionary()
    setup(**setupKeywords)

if __name__ == '__main__':
    main()
