from argparse import ArgumentParser

from drudge import accessor
from drudge import config


conf = config.read_default_config()

ps = ArgumentParser()
ps.add_argument("-p", "--prefix", default=None, help="table prefix, defaults to config value")
ps.add_argument("--print", action="store_true", help="print the sql rather than running it")
args = ps.parse_args()

if args.prefix is not None:
    conf["database"]["table_prefix"] = args.prefix

if args.print:
    for statement in accessor.PostgresAccessor.migrations(conf["database"]["table_prefix"]):
        print(statement)
else:
    acc = accessor.PostgresAccessor.from_config(conf)
    acc.create_schema()
    print(f"created: {acc.table_name}")
