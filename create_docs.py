import re

filenames = [
  "src/hbondsnap/pose.py",
  "src/hbondsnap/scoring.py",
  "src/hbondsnap/hbonds/types.py",
  "src/hbondsnap/hbonds/geom.py",
  "src/hbondsnap/hbonds/identify.py",
  "src/hbondsnap/hbonds/hbond_set.py",
  "src/hbondsnap/hbonds/hbtrie.py",
  "src/hbondsnap/trie/rotamer_trie.py",
  # "src/hbondsnap/log.py",
]

print() #  required

for filename in filenames:
  module_doc_start = False
  module_doc_end = False
  with open(filename) as f:
    # get import path
    filename_clean = filename[4:-3].split("/")
    import_statement = f"from {'.'.join(filename_clean[:-1])} import {filename_clean[-1]}"
    # print module title
    print(f"### {filename_clean[-1].upper()} MODULE")

    func = None
    for line in f:
      # get module doc
      if module_doc_start == False and line.strip() == '"""':
        module_doc_start = True
      elif module_doc_start == True and module_doc_end == False and line.strip() == '"""':
        module_doc_end = True
      elif module_doc_start == True and module_doc_end == False:
        print(line)

      # function doc, google style sections
      match = re.search(r"^def ([a-zA-Z]\w*\(.*)", line)
      if match:
        func = match.group(1).rstrip(":")
        desc = ""
        in_doc = False
        section = None
        params = []
        returns = []
      elif func is None:
        continue
      elif not in_doc and line.strip().startswith('"""'):
        in_doc = True
        desc += line.strip().strip('"') + " "
        if line.strip().endswith('"""') and len(line.strip()) > 3:
          in_doc = False
          print(f"#### {func.split('(')[0]}")
          print(f"```py\n{import_statement}\n{filename_clean[-1]}.{func.split('(')[0]}(...)\n```")
          print(desc.strip())
          print()
          func = None
      elif in_doc and line.strip() == '"""':
        in_doc = False
        print(f"#### {func.split('(')[0]}")
        print(f"```py\n{import_statement}\n{filename_clean[-1]}.{func.split('(')[0]}(...)\n```")
        print(f"##### Description:")
        print(desc.strip())
        if params:
          print(f"##### Parameters:")
          for x in params:
            t, d = x.split(":", 1)
            print(f"- **{t.strip()}**: {d.strip()}")
        if returns:
          print(f"##### Returns:")
          for x in returns:
            print(f"- {x}")
        print()
        func = None
      elif in_doc:
        stripped = line.strip()
        if stripped in ("Args:", "Returns:", "Raises:", "Yields:"):
          section = stripped
        elif section == "Args:" and re.match(r"^    \S", line) and ":" in stripped:
          params.append(stripped)
        elif section == "Args:" and params and stripped:
          params[-1] += " " + stripped
        elif section in ("Returns:", "Yields:") and stripped:
          returns.append(stripped)
        elif section is None:
          desc += stripped + " "
